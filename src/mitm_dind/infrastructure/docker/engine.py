"""Docker Engine adapter for the provisioning port, backed by the Docker SDK."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator, Callable, Iterator, Mapping
from typing import Any, TypeVar

import docker
import requests
from docker.errors import APIError, DockerException, NotFound
from docker.types import Mount

from mitm_dind.application.ports.engine import EnginePort, ImageInfo
from mitm_dind.domain.container import ContainerConfig
from mitm_dind.domain.handle import ProxyAttachment
from mitm_dind.errors import EngineRequestError, EngineUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_STREAM_DONE = object()


class DockerEngine(EnginePort):
    """Engine port implementation talking to a Docker daemon.

    Blocking SDK calls run in worker threads so callers can cancel the
    surrounding task.
    """

    def __init__(
        self,
        *,
        client: docker.DockerClient | None = None,
        client_factory: Callable[[], docker.DockerClient] | None = None,
        proxy_port: int = 8080,
    ) -> None:
        self._client = client
        self._client_factory = client_factory or docker.from_env
        self._proxy_port = proxy_port

    @property
    def client(self) -> docker.DockerClient:
        """Lazy initialization of the Docker client."""
        if self._client is None:
            try:
                self._client = self._client_factory()
            except DockerException as exc:
                raise EngineUnavailableError(f"failed to create docker client: {exc}") from exc
        return self._client

    async def find_image(self, reference: str) -> ImageInfo | None:
        def _get() -> ImageInfo | None:
            try:
                image = self.client.images.get(reference)
            except NotFound:
                return None
            return ImageInfo(id=image.id, tags=tuple(image.tags))

        return await self._call(_get, operation="inspect image")

    async def pull_image(
        self,
        reference: str,
        *,
        auth: Mapping[str, str] | None = None,
    ) -> AsyncGenerator[Mapping[str, Any], None]:
        auth_config = dict(auth) if auth else None

        def _start() -> Iterator[Mapping[str, Any]]:
            return iter(
                self.client.api.pull(
                    reference,
                    stream=True,
                    decode=True,
                    auth_config=auth_config,
                )
            )

        stream = await self._call(_start, operation="pull image")
        try:
            while True:
                item = await self._call(next, stream, _STREAM_DONE, operation="pull image")
                if item is _STREAM_DONE:
                    return
                yield item
        finally:
            auth_config = None
            _close_stream(stream, reference)

    async def find_proxy(self, name: str) -> ProxyAttachment | None:
        def _get() -> ProxyAttachment | None:
            try:
                container = self.client.containers.get(name)
            except NotFound:
                return None
            state = container.attrs.get("State") or {}
            if not state.get("Running", container.status == "running"):
                logger.info(
                    "mitm proxy container is not running",
                    extra={"data": {"proxy": name, "status": container.status}},
                )
                return None
            return ProxyAttachment(
                container_id=container.id,
                name=name,
                network_mode=f"container:{container.id}",
                proxy_url=f"http://127.0.0.1:{self._proxy_port}",
                ip_address=_container_ip(container.attrs),
            )

        return await self._call(_get, operation="inspect proxy")

    async def create_container(self, config: ContainerConfig) -> str:
        def _create() -> str:
            container = self.client.containers.create(**_create_kwargs(config))
            return str(container.id)

        return await self._call(_create, operation="create container")

    async def start_container(self, container_id: str) -> None:
        await self._call(self.client.api.start, container_id, operation="start container")

    async def remove_container(self, container_id: str, *, force: bool = False) -> None:
        def _remove() -> None:
            try:
                self.client.api.remove_container(container_id, force=force, v=True)
            except NotFound:
                logger.debug("container already removed", extra={"data": {"container": container_id}})

        await self._call(_remove, operation="remove container")

    async def _call(self, func: Callable[..., T], *args: Any, operation: str) -> T:
        try:
            return await asyncio.to_thread(func, *args)
        except APIError as exc:
            raise EngineRequestError(
                f"docker {operation} failed: {exc.explanation or exc}",
                status_code=exc.status_code,
                explanation=str(exc.explanation) if exc.explanation else None,
            ) from exc
        except (requests.exceptions.RequestException, DockerException) as exc:
            raise EngineUnavailableError(f"docker {operation} failed: {exc}") from exc


def _create_kwargs(config: ContainerConfig) -> dict[str, Any]:
    kwargs: dict[str, Any] = {
        "image": config.image,
        "name": config.name,
        "detach": True,
        "privileged": config.privileged,
        "environment": dict(config.environment),
        "labels": dict(config.labels),
        "mounts": [Mount(target=path, source=None, type="volume") for path in config.volumes],
    }
    if config.network_mode:
        kwargs["network_mode"] = config.network_mode
    if config.volumes_from:
        kwargs["volumes_from"] = list(config.volumes_from)
    if config.command:
        kwargs["command"] = list(config.command)
    return kwargs


def _close_stream(stream: Iterator[Mapping[str, Any]], reference: str) -> None:
    close = getattr(stream, "close", None)
    if close is None:
        return
    try:
        close()
    except ValueError:
        # A worker thread cancelled mid-read still owns the generator.
        logger.debug("pull stream still in use, left to finish", extra={"data": {"image": reference}})


def _container_ip(attrs: Mapping[str, Any]) -> str | None:
    settings = attrs.get("NetworkSettings") or {}
    address = settings.get("IPAddress")
    if address:
        return str(address)
    for network in (settings.get("Networks") or {}).values():
        if network and network.get("IPAddress"):
            return str(network["IPAddress"])
    return None


__all__ = ["DockerEngine"]
