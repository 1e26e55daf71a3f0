# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_builder

from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from coreason_builder.integrations.vault import VaultIntegrator
from coreason_builder.models import ImageConfig

DEFAULT_REGISTRY = "https://index.docker.io/v1/"


class VaultSettingsSource(PydanticBaseSettingsSource):
    """
    Custom Pydantic Settings Source that reads registry credentials from Vault.
    """

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        # Required by the abstract base class; unused because __call__ returns the full dict.
        return None, field_name, False  # pragma: no cover

    def __call__(self) -> dict[str, Any]:
        vault = VaultIntegrator()
        secrets: dict[str, Any] = {}

        # Config Field -> Vault Key
        mapping = {
            "registry_username": "REGISTRY_USERNAME",
            "registry_password": "REGISTRY_PASSWORD",
        }

        for field, key in mapping.items():
            val = vault.get_secret(key)
            if val:
                secrets[field] = val

        return secrets


class BuilderConfig(BaseSettings):
    """
    Configuration for image builds.
    """

    docker_host: str | None = None
    api_version: str = "auto"
    api_timeout: int = 60

    verbose: bool = False
    trace_buffer_size: int = Field(default=1024, ge=1)
    session_ready_timeout: float = 5.0
    session_name: str = "coreason-builder"

    registry_url: str = DEFAULT_REGISTRY
    registry_username: str | None = None
    registry_password: str | None = None

    log_level: str = "INFO"
    log_dir: str = "logs"

    images: dict[str, ImageConfig] = Field(default_factory=dict)
    target: str | None = None

    model_config = SettingsConfigDict(
        env_prefix="COREASON_BUILDER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def auth_configs(self) -> dict[str, dict[str, Any]]:
        """Credential set sent with every build, keyed by registry."""
        if not self.registry_username:
            return {}
        return {
            self.registry_url: {
                "username": self.registry_username,
                "password": self.registry_password or "",
                "serveraddress": self.registry_url,
            }
        }

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            VaultSettingsSource(settings_cls),
            file_secret_settings,
        )
