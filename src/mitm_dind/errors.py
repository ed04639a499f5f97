"""Error taxonomy for DinD provisioning."""

from __future__ import annotations


class DindError(Exception):
    """Base class for DinD provisioning failures."""

    def __init__(self, message: str, *, name: str | None = None, image: str | None = None) -> None:
        super().__init__(message)
        self.name = name
        self.image = image


class InvalidSpecError(DindError, ValueError):
    """Raised when a DinD spec fails validation before any engine call."""

    def __init__(self, problems: list[str] | tuple[str, ...], *, name: str | None = None) -> None:
        self.problems = tuple(problems)
        super().__init__("invalid dind spec: " + "; ".join(self.problems), name=name)


class EngineError(DindError):
    """Base class for failures reported by the container engine adapter."""


class EngineUnavailableError(EngineError):
    """Raised when the engine cannot be reached (transport/connection failure)."""


class EngineRequestError(EngineError):
    """Raised when the engine rejects a request."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        explanation: str | None = None,
        name: str | None = None,
        image: str | None = None,
    ) -> None:
        super().__init__(message, name=name, image=image)
        self.status_code = status_code
        self.explanation = explanation

    @property
    def is_conflict(self) -> bool:
        return self.status_code == 409


class ImageError(DindError):
    """Base class for image resolution failures."""


class PullFailedError(ImageError):
    """Raised when pulling an image fails (auth, network, unknown upstream reference)."""


class ImageNotFoundError(ImageError):
    """Raised when a pull completed but the image still cannot be located."""


class ProxyNotFoundError(DindError):
    """Raised when the requested MITM proxy is missing or not running."""

    def __init__(self, proxy_name: str, *, name: str | None = None) -> None:
        super().__init__(f"mitm proxy {proxy_name!r} not found or not running", name=name)
        self.proxy_name = proxy_name


class CreateFailedError(DindError):
    """Raised when the engine refuses to create the sandbox container."""


class StartFailedError(DindError):
    """Raised when the sandbox container could not be started.

    ``residual_container_id`` is set only when the rollback removal failed and
    the created container may still exist.
    """

    def __init__(
        self,
        message: str,
        *,
        container_id: str,
        residual_container_id: str | None = None,
        cleanup_error: BaseException | None = None,
        name: str | None = None,
        image: str | None = None,
    ) -> None:
        super().__init__(message, name=name, image=image)
        self.container_id = container_id
        self.residual_container_id = residual_container_id
        self.cleanup_error = cleanup_error


__all__ = [
    "CreateFailedError",
    "DindError",
    "EngineError",
    "EngineRequestError",
    "EngineUnavailableError",
    "ImageError",
    "ImageNotFoundError",
    "InvalidSpecError",
    "ProxyNotFoundError",
    "PullFailedError",
    "StartFailedError",
]
