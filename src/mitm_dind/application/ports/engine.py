"""Port definition for the container engine the provisioner drives."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from mitm_dind.domain.container import ContainerConfig
from mitm_dind.domain.handle import ProxyAttachment


@dataclass(frozen=True, slots=True)
class ImageInfo:
    """Local image metadata."""

    id: str
    tags: tuple[str, ...] = field(default_factory=tuple)


class EnginePort(Protocol):
    """Capability set required from a container engine.

    Implementations raise ``EngineUnavailableError`` for transport failures and
    ``EngineRequestError`` when the engine rejects a request.
    """

    async def find_image(self, reference: str) -> ImageInfo | None:
        """Return local metadata for ``reference`` or ``None`` when it is not cached."""

    def pull_image(
        self,
        reference: str,
        *,
        auth: Mapping[str, str] | None = None,
    ) -> AsyncGenerator[Mapping[str, Any], None]:
        """Pull ``reference`` and yield engine progress entries until done."""

    async def find_proxy(self, name: str) -> ProxyAttachment | None:
        """Return the attachment point of the running container ``name`` or ``None``."""

    async def create_container(self, config: ContainerConfig) -> str:
        """Create (but do not start) a container and return its identifier."""

    async def start_container(self, container_id: str) -> None:
        """Start a created container."""

    async def remove_container(self, container_id: str, *, force: bool = False) -> None:
        """Remove a container and its anonymous volumes."""


__all__ = ["EnginePort", "ImageInfo"]
