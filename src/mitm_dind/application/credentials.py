"""Call-scoped registry authentication payloads."""

from __future__ import annotations

import base64
import json
from collections.abc import Iterator
from contextlib import contextmanager

from mitm_dind.domain.spec import DindSpec

DOCKER_AUTH_CONFIG_ENV = "DOCKER_AUTH_CONFIG"


class RegistryAuth:
    """Registry credentials held only for the duration of one provisioning call.

    ``clear()`` drops every reference to the secret material; the object is
    unusable afterwards.
    """

    __slots__ = ("_server", "_username", "_password")

    def __init__(self, *, server: str, username: str, password: str) -> None:
        self._server: str | None = server
        self._username: str | None = username
        self._password: str | None = password

    @classmethod
    def from_spec(cls, spec: DindSpec) -> RegistryAuth | None:
        if not spec.has_registry_credentials:
            return None
        password = spec.registry_password.get_secret_value() if spec.registry_password else ""
        return cls(
            server=spec.registry_server_address,
            username=spec.registry_username,
            password=password,
        )

    @property
    def server(self) -> str:
        if self._server is None:
            raise RuntimeError("registry auth has been cleared")
        return self._server

    @property
    def cleared(self) -> bool:
        return self._password is None and self._username is None

    def engine_payload(self) -> dict[str, str]:
        """Return the ``auth_config`` mapping the engine expects on pull."""
        if self.cleared:
            raise RuntimeError("registry auth has been cleared")
        return {
            "username": self._username or "",
            "password": self._password or "",
            "serveraddress": self.server,
        }

    def docker_config_json(self) -> str:
        """Return a ``config.json`` style document for the nested Docker daemon."""
        if self.cleared:
            raise RuntimeError("registry auth has been cleared")
        token = base64.b64encode(f"{self._username}:{self._password}".encode()).decode("ascii")
        return json.dumps({"auths": {self.server: {"auth": token}}}, separators=(",", ":"))

    def clear(self) -> None:
        self._server = None
        self._username = None
        self._password = None

    def __repr__(self) -> str:
        state = "cleared" if self.cleared else f"server={self._server!r}"
        return f"RegistryAuth({state})"


@contextmanager
def scoped_registry_auth(spec: DindSpec) -> Iterator[RegistryAuth | None]:
    """Yield the spec's registry auth and clear it when the block exits."""

    auth = RegistryAuth.from_spec(spec)
    try:
        yield auth
    finally:
        if auth is not None:
            auth.clear()


__all__ = ["DOCKER_AUTH_CONFIG_ENV", "RegistryAuth", "scoped_registry_auth"]
