from __future__ import annotations

import pytest
from pydantic import SecretStr

from mitm_dind.application.create_dind import DindCreator, create_dind
from mitm_dind.config.settings import DindSettings
from mitm_dind.domain.spec import DindSpec
from mitm_dind.errors import InvalidSpecError, ProxyNotFoundError, PullFailedError
from fixtures.fakes import FakeEngine, FakeProxy

pytestmark = pytest.mark.anyio("asyncio")

SBX1 = DindSpec(name="sbx1", image="alpine:3.18")


async def test_cached_image_creates_sandbox_without_pull(settings: DindSettings) -> None:
    engine = FakeEngine(images={"alpine:3.18"})

    handle = await create_dind(engine, SBX1, settings=settings)

    assert engine.count("pull_image") == 0
    assert engine.count("create_container") == 1
    assert engine.count("start_container") == 1
    created_ids = list(engine.containers)
    assert handle.container_id == created_ids[0]


async def test_missing_image_is_pulled_exactly_once_before_create(settings: DindSettings) -> None:
    engine = FakeEngine()

    await create_dind(engine, SBX1, settings=settings)

    operations = engine.operations()
    assert [payload for name, payload in engine.calls if name == "pull_image"] == ["alpine:3.18"]
    assert operations.index("pull_image") < operations.index("create_container")


async def test_unknown_proxy_creates_and_starts_nothing(settings: DindSettings) -> None:
    engine = FakeEngine(images={"alpine:3.18"})
    spec = DindSpec(name="sbx1", image="alpine:3.18", mitm_proxy_name="proxy-x")

    with pytest.raises(ProxyNotFoundError) as excinfo:
        await create_dind(engine, spec, settings=settings)

    assert engine.count("create_container") == 0
    assert engine.count("start_container") == 0
    assert "failed to create new dind sbx1" in getattr(excinfo.value, "__notes__", [])


async def test_invalid_spec_fails_before_image_resolution(settings: DindSettings) -> None:
    engine = FakeEngine()
    spec = DindSpec(name="sbx1", image="alpine:3.18", registry_username="ci")

    with pytest.raises(InvalidSpecError):
        await create_dind(engine, spec, settings=settings)

    assert engine.calls == []


async def test_pull_failure_stops_before_create(settings: DindSettings) -> None:
    engine = FakeEngine(pull_progress=[{"error": "toomanyrequests: rate limit"}])

    with pytest.raises(PullFailedError) as excinfo:
        await create_dind(engine, SBX1, settings=settings)

    assert engine.count("create_container") == 0
    assert "failed to load dind image alpine:3.18" in getattr(excinfo.value, "__notes__", [])


async def test_registry_credentials_authenticate_pull_from_same_registry(
    settings: DindSettings,
) -> None:
    engine = FakeEngine()
    spec = DindSpec(
        name="sbx1",
        image="registry.example.com/team/dind:24",
        registry_server_address="https://registry.example.com/",
        registry_username="ci",
        registry_password=SecretStr("hunter2"),
    )

    await create_dind(engine, spec, settings=settings)

    assert engine.pull_auths == [
        {
            "username": "ci",
            "password": "hunter2",
            "serveraddress": "https://registry.example.com/",
        }
    ]


async def test_registry_credentials_are_not_sent_to_other_registries(
    settings: DindSettings,
) -> None:
    engine = FakeEngine()
    spec = DindSpec(
        name="sbx1",
        image="docker:dind",
        registry_server_address="registry.example.com",
        registry_username="ci",
        registry_password=SecretStr("hunter2"),
    )

    await create_dind(engine, spec, settings=settings)

    assert engine.pull_auths == [None]
    assert engine.count("create_container") == 1


async def test_docker_hub_aliases_match_unqualified_images(settings: DindSettings) -> None:
    engine = FakeEngine()
    spec = DindSpec(
        name="sbx1",
        image="docker:dind",
        registry_server_address="index.docker.io",
        registry_username="ci",
        registry_password=SecretStr("hunter2"),
    )

    await create_dind(engine, spec, settings=settings)

    assert engine.pull_auths[0] is not None


async def test_creator_reuses_resolved_images_across_sandboxes(settings: DindSettings) -> None:
    engine = FakeEngine(proxies={"proxy-x": FakeProxy(id="proxy123")})
    creator = DindCreator(engine, settings=settings)

    first = await creator.create(DindSpec(name="sbx1", image="docker:dind", mitm_proxy_name="proxy-x"))
    second = await creator.create(DindSpec(name="sbx2", image="docker:dind", mitm_proxy_name="proxy-x"))

    assert engine.count("pull_image") == 1
    assert engine.count("find_image") == 2
    assert first.container_id != second.container_id
    assert first.proxy == second.proxy
