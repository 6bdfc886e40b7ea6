"""
Configuration management for the CodeQL bundle customizer
"""

import tempfile
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )
    app_name: str = "qlbundle"

    log_level: str = "INFO"
    log_json: bool = False

    # Bounded fan-out for weaving, query pack creation and recompilation
    concurrency_limit: int = 2

    # GitHub runners export RUNNER_TEMP; elsewhere the platform temp dir is used
    runner_temp: Optional[str] = None

    # Toolchain
    codeql_executable: str = "codeql"
    qlx_min_version: str = "2.11.4"  # first CLI release accepting `pack create --qlx`

    # Repository conventions
    standard_pack_scope: str = "codeql"
    suite_helpers_pack: str = "codeql/suite-helpers"
    extension_point_file: str = "Customizations.qll"

    # Release acquisition
    github_api_url: str = "https://api.github.com"
    github_token: Optional[str] = None
    release_repository: str = "github/codeql-action"
    bundle_asset_name: str = "codeql-bundle.tar.gz"
    http_timeout_sec: float = Field(default=300.0, gt=0)

    @field_validator("concurrency_limit")
    @classmethod
    def validate_concurrency_limit(cls, value: int) -> int:
        if value < 1:
            raise ValueError("concurrency_limit must be at least 1")
        return value

    @property
    def temp_root(self) -> str:
        return self.runner_temp or tempfile.gettempdir()


settings = Settings()


def get_settings() -> Settings:
    """Get the current settings instance."""
    return settings
