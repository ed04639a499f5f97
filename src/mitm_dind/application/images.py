"""Lazy image resolution: pull only on local cache miss."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from contextlib import aclosing
from typing import Any

from opentelemetry import trace

from mitm_dind.application.ports.engine import EnginePort, ImageInfo
from mitm_dind.errors import (
    EngineRequestError,
    EngineUnavailableError,
    ImageNotFoundError,
    InvalidSpecError,
    PullFailedError,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


async def ensure_image(
    engine: EnginePort,
    reference: str,
    *,
    auth: Mapping[str, str] | None = None,
) -> ImageInfo:
    """Make sure ``reference`` exists locally, pulling it when absent."""

    if not reference or not reference.strip():
        raise InvalidSpecError(["image reference must be non-empty"])

    with tracer.start_as_current_span("mitm_dind.ensure_image") as span:
        span.set_attribute("image.reference", reference)
        info = await _find_image(engine, reference)
        if info is not None:
            span.set_attribute("image.pulled", False)
            logger.debug("image already present", extra={"data": {"image": reference}})
            return info

        span.set_attribute("image.pulled", True)
        logger.info(
            "pulling image",
            extra={"data": {"image": reference, "authenticated": auth is not None}},
        )
        await _consume_pull(engine, reference, auth)

        info = await _find_image(engine, reference)
        if info is None:
            raise ImageNotFoundError(
                f"image {reference} not found after pull completed",
                image=reference,
            )
        logger.info("pulled image", extra={"data": {"image": reference, "image_id": info.id}})
        return info


async def _find_image(engine: EnginePort, reference: str) -> ImageInfo | None:
    try:
        return await engine.find_image(reference)
    except EngineUnavailableError as exc:
        raise EngineUnavailableError(
            f"failed to inspect image {reference}: {exc}",
            image=reference,
        ) from exc


async def _consume_pull(
    engine: EnginePort,
    reference: str,
    auth: Mapping[str, str] | None,
) -> None:
    last_status: str | None = None
    try:
        async with aclosing(engine.pull_image(reference, auth=auth)) as stream:
            async for progress in stream:
                error = _progress_error(progress)
                if error is not None:
                    raise PullFailedError(f"failed to pull image {reference}: {error}", image=reference)
                status = progress.get("status")
                if isinstance(status, str) and status != last_status:
                    last_status = status
                    logger.debug(
                        "pull progress",
                        extra={"data": {"image": reference, "status": status, "layer": progress.get("id")}},
                    )
    except EngineUnavailableError as exc:
        raise EngineUnavailableError(
            f"failed to pull image {reference}: {exc}",
            image=reference,
        ) from exc
    except EngineRequestError as exc:
        raise PullFailedError(f"failed to pull image {reference}: {exc}", image=reference) from exc


def _progress_error(progress: Mapping[str, Any]) -> str | None:
    error = progress.get("error")
    if error:
        return str(error)
    detail = progress.get("errorDetail")
    if isinstance(detail, Mapping) and detail.get("message"):
        return str(detail["message"])
    return None


class LazyImageLoader:
    """Resolve each distinct reference at most once for the lifetime of the loader.

    Concurrent callers asking for the same reference share a single pull.
    The per-reference lock is dropped once the reference resolves.
    """

    def __init__(self, engine: EnginePort) -> None:
        self._engine = engine
        self._resolved: dict[str, ImageInfo] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def ensure(
        self,
        reference: str,
        *,
        auth: Mapping[str, str] | None = None,
    ) -> ImageInfo:
        cached = self._resolved.get(reference)
        if cached is not None:
            return cached
        lock = self._locks.setdefault(reference, asyncio.Lock())
        async with lock:
            cached = self._resolved.get(reference)
            if cached is not None:
                return cached
            info = await ensure_image(self._engine, reference, auth=auth)
            self._resolved[reference] = info
            self._locks.pop(reference, None)
            return info


__all__ = ["LazyImageLoader", "ensure_image"]
