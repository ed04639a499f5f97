"""DinD provisioning settings resolved from the environment."""

from __future__ import annotations

import logging
import shlex

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DIND_IMAGE = "docker:dind"


class DindSettings(BaseSettings):
    """Defaults applied to every sandbox the provisioner creates."""

    model_config = SettingsConfigDict(
        env_prefix="",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
        populate_by_name=True,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    image: str = Field(default=DEFAULT_DIND_IMAGE, alias="MITM_DIND_IMAGE")
    proxy_port: int = Field(default=8080, alias="MITM_DIND_PROXY_PORT", ge=1, le=65535)
    no_proxy: str = Field(default="localhost,127.0.0.1", alias="MITM_DIND_NO_PROXY")
    share_proxy_volumes: bool = Field(default=True, alias="MITM_DIND_SHARE_PROXY_VOLUMES")
    default_network: str | None = Field(default=None, alias="MITM_DIND_DEFAULT_NETWORK")
    dind_data_path: str = Field(default="/var/lib/docker", alias="MITM_DIND_DATA_PATH")
    dind_command: str = Field(default="", alias="MITM_DIND_COMMAND")
    registry_password: SecretStr | None = Field(default=None, alias="MITM_DIND_REGISTRY_PASSWORD")

    @field_validator("default_network", mode="before")
    @classmethod
    def _blank_network_is_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def dind_command_args(self) -> tuple[str, ...]:
        return tuple(shlex.split(self.dind_command))

    @property
    def registry_password_value(self) -> str | None:
        if self.registry_password is None:
            return None
        return self.registry_password.get_secret_value()


def load_settings() -> DindSettings:
    instance = DindSettings()
    logging.getLogger("mitm_dind.settings").debug("dind settings loaded: %r", instance)
    return instance


__all__ = ["DEFAULT_DIND_IMAGE", "DindSettings", "load_settings"]
