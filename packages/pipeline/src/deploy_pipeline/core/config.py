from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

LogFormat = Literal["json", "console"]
BootstrapPolicyName = Literal["placeholder", "reorder"]
BackendName = Literal["local", "external"]

# Minimal image that starts and idles; used until the first publish lands.
DEFAULT_PLACEHOLDER_IMAGE = "registry.k8s.io/pause:3.9"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="DEPLOY_PIPELINE_",
        env_file=".env",
        extra="ignore",
    )

    state_root: Path = Field(default=Path("_state"))
    log_level: str = Field(default="INFO")
    log_format: LogFormat = Field(default="console")

    environment: str = Field(default="production", min_length=1)
    tracked_branch: str = Field(default="main", min_length=1)
    bootstrap_policy: BootstrapPolicyName = Field(default="placeholder")
    placeholder_image: str = Field(default=DEFAULT_PLACEHOLDER_IMAGE)
    max_parallel_stages: int = Field(default=4, ge=1)

    backend: BackendName = Field(default="local")
    definition_path: Path | None = Field(default=None)
    source_root: Path = Field(default=Path("."))
    build_context: Path = Field(default=Path("."))
    infra_dir: Path = Field(default=Path("infra"))
    image_name: str = Field(default="app", min_length=1)
    test_command: list[str] = Field(default_factory=lambda: ["pytest", "-q"])

    terraform_bin: str = Field(default="terraform")
    docker_bin: str = Field(default="docker")
    platform_api_url: str | None = Field(default=None)
    platform_api_timeout_s: float = Field(default=30.0, gt=0)
    # Transport-level attempts for the idempotent service update call only.
    platform_api_max_attempts: int = Field(default=3, ge=1)

    # Resolved per stage call; a stage only sees the names it declares.
    secrets: dict[str, SecretStr] = Field(default_factory=dict)


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    return Settings()
