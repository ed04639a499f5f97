"""Docker image reference parsing (``[registry/]repository[:tag][@digest]``)."""

from __future__ import annotations

import re
from dataclasses import dataclass

from mitm_dind.errors import InvalidSpecError

DEFAULT_REGISTRY = "docker.io"

_PATH_COMPONENT = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
_TAG = re.compile(r"^[\w][\w.-]{0,127}$")
_DIGEST = re.compile(r"^[a-z0-9]+(?:[.+_-][a-z0-9]+)*:[0-9a-fA-F]{32,}$")
_REGISTRY = re.compile(r"^(?:[a-zA-Z0-9-]+(?:\.[a-zA-Z0-9-]+)*|\[[0-9a-fA-F:]+\])(?::[0-9]+)?$")


@dataclass(frozen=True, slots=True)
class ImageReference:
    """Parsed image reference."""

    registry: str
    repository: str
    tag: str | None = None
    digest: str | None = None

    @classmethod
    def parse(cls, text: str) -> ImageReference:
        problem = _parse_problem(text)
        if problem is not None:
            raise InvalidSpecError([problem])
        remainder, digest = _split_digest(text)
        registry, path = _split_registry(remainder)
        repository, tag = _split_tag(path)
        return cls(registry=registry, repository=repository, tag=tag, digest=digest)

    @property
    def registry_host(self) -> str:
        return self.registry or DEFAULT_REGISTRY

    def __str__(self) -> str:
        text = f"{self.registry}/{self.repository}" if self.registry else self.repository
        if self.tag:
            text = f"{text}:{self.tag}"
        if self.digest:
            text = f"{text}@{self.digest}"
        return text


def image_reference_problem(text: str) -> str | None:
    """Return a description of why ``text`` is not a valid reference, or ``None``."""

    return _parse_problem(text)


def _parse_problem(text: str) -> str | None:
    if not text or not text.strip():
        return "image reference must be non-empty"
    if text != text.strip():
        return f"image reference {text!r} has surrounding whitespace"
    remainder, digest = _split_digest(text)
    if digest is not None and not _DIGEST.match(digest):
        return f"image reference {text!r} has an invalid digest"
    registry, path = _split_registry(remainder)
    if registry and not _REGISTRY.match(registry):
        return f"image reference {text!r} has an invalid registry host"
    repository, tag = _split_tag(path)
    if tag is not None and not _TAG.match(tag):
        return f"image reference {text!r} has an invalid tag"
    if not repository or not all(_PATH_COMPONENT.match(part) for part in repository.split("/")):
        return f"image reference {text!r} has an invalid repository"
    return None


def _split_digest(text: str) -> tuple[str, str | None]:
    if "@" not in text:
        return text, None
    remainder, _, digest = text.partition("@")
    return remainder, digest


def _split_registry(text: str) -> tuple[str, str]:
    first, sep, rest = text.partition("/")
    if sep and ("." in first or ":" in first or first == "localhost"):
        return first, rest
    return "", text


def _split_tag(path: str) -> tuple[str, str | None]:
    repository, sep, tag = path.rpartition(":")
    if not sep or "/" in tag:
        return path, None
    return repository, tag


__all__ = ["DEFAULT_REGISTRY", "ImageReference", "image_reference_problem"]
