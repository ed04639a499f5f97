"""Resolved proxy attachment and the caller-owned sandbox handle."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class ProxyAttachment:
    """Network attachment point of a running MITM proxy container."""

    container_id: str
    name: str
    network_mode: str
    proxy_url: str
    ip_address: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "container_id": self.container_id,
            "name": self.name,
            "network_mode": self.network_mode,
            "proxy_url": self.proxy_url,
            "ip_address": self.ip_address,
        }


@dataclass(frozen=True, slots=True)
class SandboxHandle:
    """Live reference to a created and started DinD container."""

    container_id: str
    name: str
    image: str
    network_mode: str | None = None
    proxy: ProxyAttachment | None = None

    @property
    def intercepted(self) -> bool:
        return self.proxy is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "container_id": self.container_id,
            "name": self.name,
            "image": self.image,
            "network_mode": self.network_mode,
            "proxy": self.proxy.to_dict() if self.proxy is not None else None,
        }


__all__ = ["ProxyAttachment", "SandboxHandle"]
