"""DinD sandbox provisioning: resolve proxy, build config, create, start, roll back."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from enum import Enum

from opentelemetry import trace

from mitm_dind.application.credentials import (
    DOCKER_AUTH_CONFIG_ENV,
    RegistryAuth,
    scoped_registry_auth,
)
from mitm_dind.application.ports.engine import EnginePort
from mitm_dind.config.settings import DindSettings
from mitm_dind.domain.container import ContainerConfig
from mitm_dind.domain.handle import ProxyAttachment, SandboxHandle
from mitm_dind.domain.spec import DindSpec, validate_spec
from mitm_dind.errors import (
    CreateFailedError,
    EngineError,
    EngineRequestError,
    EngineUnavailableError,
    ProxyNotFoundError,
    StartFailedError,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

LABEL_MANAGED = "mitm-dind.managed"
LABEL_NAME = "mitm-dind.name"
LABEL_PROXY = "mitm-dind.proxy"


class ProvisionState(Enum):
    """States of a single ``create_sandbox`` invocation."""

    REQUESTED = "requested"
    PROXY_RESOLVED = "proxy_resolved"
    CONFIG_BUILT = "config_built"
    CREATED = "created"
    STARTED = "started"
    READY = "ready"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"
    ROLLBACK_FAILED = "rollback_failed"


_TRANSITIONS: dict[ProvisionState, frozenset[ProvisionState]] = {
    ProvisionState.REQUESTED: frozenset(
        {ProvisionState.PROXY_RESOLVED, ProvisionState.FAILED}
    ),
    ProvisionState.PROXY_RESOLVED: frozenset(
        {ProvisionState.CONFIG_BUILT, ProvisionState.FAILED}
    ),
    ProvisionState.CONFIG_BUILT: frozenset({ProvisionState.CREATED, ProvisionState.FAILED}),
    ProvisionState.CREATED: frozenset(
        {ProvisionState.STARTED, ProvisionState.ROLLED_BACK, ProvisionState.ROLLBACK_FAILED}
    ),
    ProvisionState.STARTED: frozenset({ProvisionState.READY}),
    ProvisionState.READY: frozenset(),
    ProvisionState.FAILED: frozenset(),
    ProvisionState.ROLLED_BACK: frozenset(),
    ProvisionState.ROLLBACK_FAILED: frozenset(),
}

TransitionObserver = Callable[[ProvisionState], None]


class _Provisioning:
    """Tracks one invocation's state and rejects illegal transitions."""

    def __init__(self, name: str, observer: TransitionObserver | None) -> None:
        self.name = name
        self.state = ProvisionState.REQUESTED
        self.container_id: str | None = None
        self._observer = observer
        self._notify()

    def advance(self, state: ProvisionState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"illegal provisioning transition {self.state.value} -> {state.value}")
        self.state = state
        logger.debug(
            "provisioning state changed",
            extra={"data": {"name": self.name, "state": state.value}},
        )
        self._notify()

    def fail(self) -> None:
        if self.state in {
            ProvisionState.REQUESTED,
            ProvisionState.PROXY_RESOLVED,
            ProvisionState.CONFIG_BUILT,
        }:
            self.advance(ProvisionState.FAILED)

    def _notify(self) -> None:
        if self._observer is not None:
            self._observer(self.state)


class DindProvisioner:
    """Creates DinD sandbox containers wired through an optional MITM proxy.

    The provisioner never pulls images; callers resolve ``spec.image`` first.
    It holds no reference to the handles it returns.
    """

    def __init__(
        self,
        engine: EnginePort,
        *,
        settings: DindSettings | None = None,
        on_transition: TransitionObserver | None = None,
    ) -> None:
        self._engine = engine
        self._settings = settings or DindSettings()
        self._on_transition = on_transition

    async def create_sandbox(self, spec: DindSpec) -> SandboxHandle:
        validate_spec(spec)
        run = _Provisioning(spec.name, self._on_transition)
        with tracer.start_as_current_span("mitm_dind.create_sandbox") as span:
            span.set_attribute("sandbox.name", spec.name)
            span.set_attribute("sandbox.image", spec.image)
            try:
                handle = await self._provision(spec, run)
            except BaseException:
                run.fail()
                span.set_attribute("sandbox.state", run.state.value)
                raise
            span.set_attribute("sandbox.state", run.state.value)
            span.set_attribute("sandbox.container_id", handle.container_id)
        return handle

    async def _provision(self, spec: DindSpec, run: _Provisioning) -> SandboxHandle:
        proxy = await self._resolve_proxy(spec)
        run.advance(ProvisionState.PROXY_RESOLVED)

        with scoped_registry_auth(spec) as auth:
            config = self.build_config(spec, proxy=proxy, auth=auth)
            run.advance(ProvisionState.CONFIG_BUILT)
            logger.info(
                "creating dind sandbox",
                extra={"data": config.log_data()},
            )
            container_id = await self._create(spec, config, run)
        run.container_id = container_id
        run.advance(ProvisionState.CREATED)

        await self._start(spec, run)
        run.advance(ProvisionState.STARTED)

        handle = SandboxHandle(
            container_id=container_id,
            name=spec.name,
            image=spec.image,
            network_mode=proxy.network_mode if proxy is not None else self._settings.default_network,
            proxy=proxy,
        )
        run.advance(ProvisionState.READY)
        logger.info(
            "dind sandbox ready",
            extra={"data": handle.to_dict()},
        )
        return handle

    async def _resolve_proxy(self, spec: DindSpec) -> ProxyAttachment | None:
        if not spec.has_mitm_proxy:
            return None
        try:
            proxy = await self._engine.find_proxy(spec.mitm_proxy_name)
        except EngineUnavailableError as exc:
            raise EngineUnavailableError(
                f"failed to look up mitm proxy {spec.mitm_proxy_name!r} for sandbox {spec.name}: {exc}",
                name=spec.name,
                image=spec.image,
            ) from exc
        if proxy is None:
            raise ProxyNotFoundError(spec.mitm_proxy_name, name=spec.name)
        logger.info(
            "resolved mitm proxy",
            extra={"data": {"name": spec.name, "proxy": proxy.to_dict()}},
        )
        return proxy

    def build_config(
        self,
        spec: DindSpec,
        *,
        proxy: ProxyAttachment | None,
        auth: RegistryAuth | None,
    ) -> ContainerConfig:
        """Return the container configuration for ``spec``."""
        settings = self._settings
        environment: dict[str, str] = {}
        labels = {LABEL_MANAGED: "true", LABEL_NAME: spec.name}
        volumes_from: tuple[str, ...] = ()
        network_mode = settings.default_network

        if proxy is not None:
            network_mode = proxy.network_mode
            for key in ("HTTP_PROXY", "HTTPS_PROXY", "http_proxy", "https_proxy"):
                environment[key] = proxy.proxy_url
            if settings.no_proxy:
                environment["NO_PROXY"] = settings.no_proxy
                environment["no_proxy"] = settings.no_proxy
            labels[LABEL_PROXY] = proxy.name
            if settings.share_proxy_volumes:
                volumes_from = (f"{proxy.container_id}:ro",)

        if auth is not None:
            environment[DOCKER_AUTH_CONFIG_ENV] = auth.docker_config_json()

        command = settings.dind_command_args
        return ContainerConfig(
            name=spec.name,
            image=spec.image,
            environment=environment,
            network_mode=network_mode,
            privileged=True,
            volumes=(settings.dind_data_path,),
            volumes_from=volumes_from,
            labels=labels,
            command=command or None,
        )

    async def _create(self, spec: DindSpec, config: ContainerConfig, run: _Provisioning) -> str:
        # Shielded: an engine may finish creating the container after the caller is cancelled.
        creating = asyncio.ensure_future(self._engine.create_container(config))
        try:
            return await asyncio.shield(creating)
        except asyncio.CancelledError as exc:
            await self._discard_interrupted_create(spec, run, creating, exc)
            raise
        except EngineUnavailableError as exc:
            raise EngineUnavailableError(
                f"failed to create container {spec.name} ({spec.image}): {exc}",
                name=spec.name,
                image=spec.image,
            ) from exc
        except EngineRequestError as exc:
            reason = "name conflict" if exc.is_conflict else "rejected configuration"
            raise CreateFailedError(
                f"failed to create container {spec.name} ({spec.image}): {reason}: {exc}",
                name=spec.name,
                image=spec.image,
            ) from exc

    async def _discard_interrupted_create(
        self,
        spec: DindSpec,
        run: _Provisioning,
        creating: asyncio.Future[str],
        cancelled: asyncio.CancelledError,
    ) -> None:
        """Wait for a create cut short by cancellation and remove whatever it produced."""
        await asyncio.wait({creating})
        if creating.cancelled() or creating.exception() is not None:
            return
        container_id = creating.result()
        run.container_id = container_id
        run.advance(ProvisionState.CREATED)
        cleanup_error = await self._rollback(spec, run)
        if cleanup_error is not None:
            cancelled.add_note(_residual_note(spec, container_id, cleanup_error))

    async def _start(self, spec: DindSpec, run: _Provisioning) -> None:
        container_id = run.container_id
        assert container_id is not None
        try:
            await self._engine.start_container(container_id)
        except asyncio.CancelledError as exc:
            cleanup_error = await self._rollback(spec, run)
            if cleanup_error is not None:
                exc.add_note(_residual_note(spec, container_id, cleanup_error))
            raise
        except EngineError as exc:
            cleanup_error = await self._rollback(spec, run)
            message = f"failed to start container {spec.name} ({spec.image}): {exc}"
            residual = None
            if cleanup_error is not None:
                residual = container_id
                message = f"{message}; cleanup failed, container {container_id} remains: {cleanup_error}"
            raise StartFailedError(
                message,
                container_id=container_id,
                residual_container_id=residual,
                cleanup_error=cleanup_error,
                name=spec.name,
                image=spec.image,
            ) from exc
        except Exception as exc:
            cleanup_error = await self._rollback(spec, run)
            if cleanup_error is not None:
                exc.add_note(_residual_note(spec, container_id, cleanup_error))
            raise

    async def _rollback(self, spec: DindSpec, run: _Provisioning) -> Exception | None:
        """Remove the created container; return the removal error instead of raising it.

        Ends the run in ``ROLLED_BACK`` only when the container is gone,
        otherwise in ``ROLLBACK_FAILED``.
        """
        container_id = run.container_id
        assert container_id is not None
        logger.warning(
            "rolling back dind sandbox",
            extra={"data": {"name": spec.name, "container_id": container_id}},
        )
        try:
            await self._engine.remove_container(container_id, force=True)
        except Exception as exc:
            logger.exception(
                "failed to remove dind sandbox during rollback",
                extra={"data": {"name": spec.name, "container_id": container_id}},
            )
            run.advance(ProvisionState.ROLLBACK_FAILED)
            return exc
        except BaseException:
            run.advance(ProvisionState.ROLLBACK_FAILED)
            raise
        run.advance(ProvisionState.ROLLED_BACK)
        return None


def _residual_note(spec: DindSpec, container_id: str, cleanup_error: BaseException) -> str:
    return f"container {container_id} ({spec.name}) may remain: cleanup failed: {cleanup_error}"


__all__ = [
    "LABEL_MANAGED",
    "LABEL_NAME",
    "LABEL_PROXY",
    "DindProvisioner",
    "ProvisionState",
    "TransitionObserver",
]
