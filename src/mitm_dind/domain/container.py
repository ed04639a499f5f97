"""Container configuration handed to the engine for a DinD sandbox."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace

REDACTED = "**********"

SECRET_ENV_KEYS: frozenset[str] = frozenset({"DOCKER_AUTH_CONFIG"})


@dataclass(frozen=True, slots=True)
class ContainerConfig:
    """Engine-agnostic container creation request."""

    name: str
    image: str
    environment: Mapping[str, str] = field(default_factory=dict)
    network_mode: str | None = None
    privileged: bool = False
    volumes: Sequence[str] = field(default_factory=tuple)
    volumes_from: Sequence[str] = field(default_factory=tuple)
    labels: Mapping[str, str] = field(default_factory=dict)
    command: Sequence[str] | None = None

    def redacted(self) -> ContainerConfig:
        """Return a copy safe to log: secret environment values are masked."""
        environment = {
            key: REDACTED if key in SECRET_ENV_KEYS else value
            for key, value in self.environment.items()
        }
        return replace(self, environment=environment)

    def log_data(self) -> dict[str, object]:
        safe = self.redacted()
        return {
            "name": safe.name,
            "image": safe.image,
            "network_mode": safe.network_mode,
            "privileged": safe.privileged,
            "environment": dict(safe.environment),
            "volumes": list(safe.volumes),
            "volumes_from": list(safe.volumes_from),
            "labels": dict(safe.labels),
        }


__all__ = ["REDACTED", "SECRET_ENV_KEYS", "ContainerConfig"]
