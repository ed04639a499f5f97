from __future__ import annotations

import pytest
from pydantic import ValidationError

from mitm_dind.config.settings import DEFAULT_DIND_IMAGE, DindSettings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in (
        "MITM_DIND_IMAGE",
        "MITM_DIND_PROXY_PORT",
        "MITM_DIND_NO_PROXY",
        "MITM_DIND_SHARE_PROXY_VOLUMES",
        "MITM_DIND_DEFAULT_NETWORK",
        "MITM_DIND_DATA_PATH",
        "MITM_DIND_COMMAND",
        "MITM_DIND_REGISTRY_PASSWORD",
    ):
        monkeypatch.delenv(key, raising=False)


def test_defaults() -> None:
    settings = DindSettings(_env_file=None)

    assert settings.image == DEFAULT_DIND_IMAGE
    assert settings.proxy_port == 8080
    assert settings.share_proxy_volumes is True
    assert settings.default_network is None
    assert settings.dind_command_args == ()
    assert settings.registry_password_value is None


def test_values_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MITM_DIND_IMAGE", "docker:27-dind")
    monkeypatch.setenv("MITM_DIND_PROXY_PORT", "9090")
    monkeypatch.setenv("MITM_DIND_SHARE_PROXY_VOLUMES", "false")
    monkeypatch.setenv("MITM_DIND_DEFAULT_NETWORK", "  ")
    monkeypatch.setenv("MITM_DIND_COMMAND", "--tls=false --debug")
    monkeypatch.setenv("MITM_DIND_REGISTRY_PASSWORD", "hunter2")

    settings = DindSettings(_env_file=None)

    assert settings.image == "docker:27-dind"
    assert settings.proxy_port == 9090
    assert settings.share_proxy_volumes is False
    assert settings.default_network is None
    assert settings.dind_command_args == ("--tls=false", "--debug")
    assert settings.registry_password_value == "hunter2"
    assert "hunter2" not in repr(settings)


def test_proxy_port_must_be_in_range(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MITM_DIND_PROXY_PORT", "70000")

    with pytest.raises(ValidationError):
        DindSettings(_env_file=None)


def test_settings_are_frozen() -> None:
    settings = DindSettings(_env_file=None)

    with pytest.raises(ValidationError):
        settings.proxy_port = 1  # type: ignore[misc]
