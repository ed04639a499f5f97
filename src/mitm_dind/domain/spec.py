"""Declarative description of a DinD sandbox and its validation rules."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from pydantic import SecretStr

from mitm_dind.domain.reference import image_reference_problem
from mitm_dind.errors import InvalidSpecError

_CONTAINER_NAME = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.-]*$")


@dataclass(frozen=True, slots=True)
class DindSpec:
    """Immutable request to create one DinD sandbox.

    Empty strings mean "not set" for the optional fields, matching how the
    command line hands them over.
    """

    name: str
    image: str
    mitm_proxy_name: str = ""
    registry_server_address: str = ""
    registry_username: str = ""
    registry_password: SecretStr | None = field(default=None, repr=False)

    @property
    def has_registry_credentials(self) -> bool:
        return bool(
            self.registry_server_address
            or self.registry_username
            or (self.registry_password is not None and self.registry_password.get_secret_value())
        )

    @property
    def has_mitm_proxy(self) -> bool:
        return bool(self.mitm_proxy_name)


def spec_problems(spec: DindSpec) -> list[str]:
    problems: list[str] = []
    if not spec.name:
        problems.append("name must be non-empty")
    elif not _CONTAINER_NAME.match(spec.name):
        problems.append(f"name {spec.name!r} is not a valid container name")

    image_problem = image_reference_problem(spec.image)
    if image_problem is not None:
        problems.append(image_problem)

    if spec.mitm_proxy_name != spec.mitm_proxy_name.strip():
        problems.append("mitm proxy name must not have surrounding whitespace")

    if spec.has_registry_credentials:
        if not spec.registry_server_address:
            problems.append("registry server address is required when registry credentials are set")
        if not spec.registry_username:
            problems.append("registry username is required when registry credentials are set")
    return problems


def validate_spec(spec: DindSpec) -> DindSpec:
    """Raise ``InvalidSpecError`` when ``spec`` violates any invariant; otherwise return it."""

    problems = spec_problems(spec)
    if problems:
        raise InvalidSpecError(problems, name=spec.name or None)
    return spec


__all__ = ["DindSpec", "spec_problems", "validate_spec"]
