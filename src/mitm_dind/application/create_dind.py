"""Create-DinD use case: validate, load the image lazily, provision the sandbox."""

from __future__ import annotations

import logging

from mitm_dind.application.credentials import RegistryAuth
from mitm_dind.application.images import LazyImageLoader
from mitm_dind.application.ports.engine import EnginePort
from mitm_dind.application.provisioner import DindProvisioner, TransitionObserver
from mitm_dind.config.settings import DindSettings
from mitm_dind.domain.handle import SandboxHandle
from mitm_dind.domain.reference import DEFAULT_REGISTRY, ImageReference
from mitm_dind.domain.spec import DindSpec, validate_spec
from mitm_dind.errors import DindError

logger = logging.getLogger(__name__)

_DOCKER_HUB_ALIASES = frozenset({"docker.io", "index.docker.io", "registry-1.docker.io"})


class DindCreator:
    """Runs the full create sequence against one engine.

    A single creator shares its image loader across calls, so repeated
    creations from the same image pull at most once.
    """

    def __init__(
        self,
        engine: EnginePort,
        *,
        settings: DindSettings | None = None,
        loader: LazyImageLoader | None = None,
        on_transition: TransitionObserver | None = None,
    ) -> None:
        self._settings = settings or DindSettings()
        self._loader = loader or LazyImageLoader(engine)
        self._provisioner = DindProvisioner(
            engine,
            settings=self._settings,
            on_transition=on_transition,
        )

    async def create(self, spec: DindSpec) -> SandboxHandle:
        validate_spec(spec)

        auth = _pull_auth(spec)
        try:
            await self._loader.ensure(
                spec.image,
                auth=auth.engine_payload() if auth is not None else None,
            )
        except DindError as exc:
            exc.add_note(f"failed to load dind image {spec.image}")
            logger.error(
                "failed to load dind image",
                extra={"data": {"name": spec.name, "image": spec.image, "error": str(exc)}},
            )
            raise
        finally:
            if auth is not None:
                auth.clear()

        try:
            return await self._provisioner.create_sandbox(spec)
        except DindError as exc:
            exc.add_note(f"failed to create new dind {spec.name}")
            logger.error(
                "failed to create new dind",
                extra={"data": {"name": spec.name, "image": spec.image, "error": str(exc)}},
            )
            raise


async def create_dind(
    engine: EnginePort,
    spec: DindSpec,
    *,
    settings: DindSettings | None = None,
) -> SandboxHandle:
    """Ensure ``spec.image`` is present and create the sandbox it describes."""

    return await DindCreator(engine, settings=settings).create(spec)


def _pull_auth(spec: DindSpec) -> RegistryAuth | None:
    """Registry credentials apply to the image pull only for the image's own registry."""
    if not spec.has_registry_credentials:
        return None
    reference = ImageReference.parse(spec.image)
    if _canonical_registry(reference.registry_host) != _canonical_registry(spec.registry_server_address):
        return None
    return RegistryAuth.from_spec(spec)


def _canonical_registry(address: str) -> str:
    host = address.removeprefix("https://").removeprefix("http://").split("/", 1)[0].lower()
    if host in _DOCKER_HUB_ALIASES:
        return DEFAULT_REGISTRY
    return host


__all__ = ["DindCreator", "create_dind"]
