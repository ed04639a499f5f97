from __future__ import annotations

import asyncio

import pytest

from mitm_dind.application.images import LazyImageLoader, ensure_image
from mitm_dind.errors import (
    EngineRequestError,
    EngineUnavailableError,
    ImageNotFoundError,
    InvalidSpecError,
    PullFailedError,
)
from fixtures.fakes import FakeEngine

pytestmark = pytest.mark.anyio("asyncio")


async def test_cached_image_is_not_pulled() -> None:
    engine = FakeEngine(images={"alpine:3.18"})

    info = await ensure_image(engine, "alpine:3.18")

    assert info.tags == ("alpine:3.18",)
    assert engine.count("pull_image") == 0
    assert engine.operations() == ["find_image"]


async def test_missing_image_is_pulled_once_then_cached() -> None:
    engine = FakeEngine()

    await ensure_image(engine, "alpine:3.18")
    await ensure_image(engine, "alpine:3.18")

    assert engine.count("pull_image") == 1
    assert engine.operations() == ["find_image", "pull_image", "find_image", "find_image"]


async def test_pull_forwards_auth_payload() -> None:
    engine = FakeEngine()
    auth = {"username": "ci", "password": "secret", "serveraddress": "ghcr.io"}

    await ensure_image(engine, "ghcr.io/org/dind:1", auth=auth)

    assert engine.pull_auths == [auth]


async def test_error_in_progress_stream_raises_pull_failed() -> None:
    engine = FakeEngine(
        pull_progress=[
            {"status": "Pulling from org/dind"},
            {"error": "unauthorized: authentication required", "errorDetail": {"message": "unauthorized"}},
        ],
    )

    with pytest.raises(PullFailedError, match="unauthorized") as excinfo:
        await ensure_image(engine, "ghcr.io/org/dind:1")

    assert excinfo.value.image == "ghcr.io/org/dind:1"


async def test_error_detail_without_error_key_raises_pull_failed() -> None:
    engine = FakeEngine(pull_progress=[{"errorDetail": {"message": "manifest unknown"}}])

    with pytest.raises(PullFailedError, match="manifest unknown"):
        await ensure_image(engine, "alpine:404")


async def test_engine_rejection_during_pull_raises_pull_failed() -> None:
    engine = FakeEngine(pull_error=EngineRequestError("pull access denied", status_code=404))

    with pytest.raises(PullFailedError) as excinfo:
        await ensure_image(engine, "alpine:404")

    assert isinstance(excinfo.value.__cause__, EngineRequestError)


async def test_image_missing_after_pull_raises_image_not_found() -> None:
    engine = FakeEngine(pull_stores_image=False)

    with pytest.raises(ImageNotFoundError, match="alpine:3.18"):
        await ensure_image(engine, "alpine:3.18")


async def test_unreachable_engine_raises_engine_unavailable() -> None:
    engine = FakeEngine(unavailable=True)

    with pytest.raises(EngineUnavailableError, match="alpine:3.18"):
        await ensure_image(engine, "alpine:3.18")


async def test_empty_reference_is_rejected_without_engine_calls() -> None:
    engine = FakeEngine()

    with pytest.raises(InvalidSpecError):
        await ensure_image(engine, "")

    assert engine.calls == []


async def test_lazy_loader_skips_engine_for_resolved_reference() -> None:
    engine = FakeEngine()
    loader = LazyImageLoader(engine)

    first = await loader.ensure("alpine:3.18")
    second = await loader.ensure("alpine:3.18")

    assert first == second
    assert engine.operations() == ["find_image", "pull_image", "find_image"]


async def test_lazy_loader_coalesces_concurrent_requests() -> None:
    engine = FakeEngine()
    loader = LazyImageLoader(engine)

    await asyncio.gather(*(loader.ensure("alpine:3.18") for _ in range(5)))

    assert engine.count("pull_image") == 1


async def test_lazy_loader_releases_lock_once_resolved() -> None:
    engine = FakeEngine()
    loader = LazyImageLoader(engine)

    await asyncio.gather(loader.ensure("alpine:3.18"), loader.ensure("docker:dind"))

    assert loader._locks == {}


async def test_lazy_loader_retries_after_failed_pull() -> None:
    engine = FakeEngine(pull_progress=[{"error": "toomanyrequests: rate limit"}])
    loader = LazyImageLoader(engine)

    with pytest.raises(PullFailedError):
        await loader.ensure("alpine:3.18")
    engine.pull_progress = []
    await loader.ensure("alpine:3.18")

    assert engine.count("pull_image") == 2


async def test_pull_stream_is_closed_when_progress_reports_error() -> None:
    engine = FakeEngine(
        pull_progress=[
            {"error": "unauthorized: authentication required"},
            {"status": "never reached"},
        ],
    )

    with pytest.raises(PullFailedError):
        await ensure_image(engine, "ghcr.io/org/dind:1")

    assert engine.pull_closed is True


async def test_pull_stream_is_closed_after_completion() -> None:
    engine = FakeEngine()

    await ensure_image(engine, "alpine:3.18")

    assert engine.pull_closed is True
