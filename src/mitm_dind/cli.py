"""Command line entrypoint: ``mitm-dind create``."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
from collections.abc import Callable, Sequence

from pydantic import SecretStr

from mitm_dind.application.create_dind import DindCreator
from mitm_dind.application.ports.engine import EnginePort
from mitm_dind.config.settings import DindSettings, load_settings
from mitm_dind.domain.spec import DindSpec
from mitm_dind.infrastructure.docker.engine import DockerEngine
from mitm_dind.observability.logging import configure_logging
from mitm_dind.observability.tracing import configure_tracing

logger = logging.getLogger(__name__)

EngineFactory = Callable[[DindSettings], EnginePort]


def _default_engine(settings: DindSettings) -> EnginePort:
    return DockerEngine(proxy_port=settings.proxy_port)


def build_parser(settings: DindSettings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mitm-dind",
        description="Provision Docker-in-Docker sandboxes routed through a MITM proxy.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    create = commands.add_parser("create", help="Create a new dind sandbox.")
    create.add_argument("--name", required=True, help="Name of the dind container.")
    create.add_argument("--image", default=settings.image, help="Dind image to use.")
    create.add_argument("--mitm", default="", help="Name of a running mitm proxy container.")
    create.add_argument("--registry", default="", help="Registry server address for auth.")
    create.add_argument("--username", default="", help="Registry username.")
    create.add_argument(
        "--password",
        default=None,
        help="Registry password (defaults to MITM_DIND_REGISTRY_PASSWORD).",
    )
    return parser


def spec_from_args(args: argparse.Namespace, settings: DindSettings) -> DindSpec:
    password = args.password if args.password is not None else settings.registry_password_value
    return DindSpec(
        name=args.name,
        image=args.image,
        mitm_proxy_name=args.mitm,
        registry_server_address=args.registry,
        registry_username=args.username,
        registry_password=SecretStr(password) if password else None,
    )


async def _amain(argv: Sequence[str] | None, engine_factory: EngineFactory) -> dict[str, object]:
    settings = load_settings()
    args = build_parser(settings).parse_args(list(argv) if argv is not None else None)
    spec = spec_from_args(args, settings)
    creator = DindCreator(engine_factory(settings), settings=settings)
    handle = await creator.create(spec)
    return handle.to_dict()


def main(argv: Sequence[str] | None = None, *, engine_factory: EngineFactory | None = None) -> None:
    configure_logging()
    configure_tracing(service_name=os.getenv("OTEL_SERVICE_NAME", "mitm-dind"))
    try:
        result = asyncio.run(_amain(argv, engine_factory or _default_engine))
    except KeyboardInterrupt:
        raise
    except Exception as exc:
        logger.debug("create dind failed", exc_info=exc)
        raise SystemExit(str(exc)) from exc
    print(json.dumps(result))


__all__ = ["build_parser", "main", "spec_from_args"]
