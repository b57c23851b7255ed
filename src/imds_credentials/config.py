"""Configuration management for the metadata credential refresher.

Loads settings from environment variables (and .env) and endpoint paths
from an optional config/metadata.yaml.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

import yaml
from pydantic import BaseModel, Field
from dotenv import load_dotenv


DEFAULT_ENDPOINT = "http://169.254.169.254"


class MetadataPaths(BaseModel):
    """Paths of the metadata service resources, relative to the endpoint."""
    credentials: str = "/latest/meta-data/iam/security-credentials/"
    identity_document: str = "/latest/dynamic/instance-identity/document"
    token: str = "/latest/api/token"


class Settings(BaseModel):
    """Application settings loaded from environment variables."""
    endpoint: str = Field(default=DEFAULT_ENDPOINT, description="Metadata service base URL")
    timeout: float = Field(default=2.0, description="Per-request timeout in seconds")
    use_token: bool = Field(default=False, description="Use IMDSv2 session tokens")
    token_ttl: int = Field(default=21600, description="IMDSv2 session token TTL in seconds")
    safety_margin: int = Field(default=240, description="Refresh this many seconds before expiry")
    min_refresh_delay: float = Field(default=1.0, description="Floor for any scheduled refresh delay")
    retry_delay: float = Field(default=30.0, description="Delay before the first retry after a failed refresh")
    max_retry_delay: float = Field(default=60.0, description="Upper bound for the retry delay")


class Config(BaseModel):
    """Full application configuration."""
    settings: Settings
    paths: MetadataPaths = Field(default_factory=MetadataPaths)

    def _url(self, path: str) -> str:
        return self.settings.endpoint.rstrip("/") + "/" + path.lstrip("/")

    def credentials_url(self, role_name: str = "") -> str:
        """URL listing the instance role, or of one role's credentials."""
        return self._url(self.paths.credentials) + role_name

    @property
    def identity_document_url(self) -> str:
        return self._url(self.paths.identity_document)

    @property
    def token_url(self) -> str:
        return self._url(self.paths.token)


def _find_project_root() -> Path:
    """Walk up from this file to find the project root (where config/ lives)."""
    current = Path(__file__).resolve().parent
    for parent in [current, *current.parents]:
        if (parent / "config" / "metadata.yaml").exists():
            return parent
    # Fallback: cwd
    return Path.cwd()


def _load_paths(project_root: Path) -> MetadataPaths:
    """Load endpoint path overrides from metadata.yaml, if present."""
    paths_file = project_root / "config" / "metadata.yaml"
    if not paths_file.exists():
        return MetadataPaths()

    with open(paths_file) as f:
        data = yaml.safe_load(f) or {}

    return MetadataPaths(**data.get("paths", {}))


def _env(*keys: str, default: str = "") -> str:
    """Try multiple env var names, return the first one found."""
    for key in keys:
        val = os.environ.get(key, "")
        if val:
            return val.strip().strip('"')
    return default


def _flag(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _load_settings() -> Settings:
    """Load settings from environment variables.

    The endpoint also honours the AWS SDK's AWS_EC2_METADATA_SERVICE_ENDPOINT.
    """
    return Settings(
        endpoint=_env(
            "IMDS_CREDENTIALS_ENDPOINT",
            "AWS_EC2_METADATA_SERVICE_ENDPOINT",
            default=DEFAULT_ENDPOINT,
        ),
        timeout=float(_env("IMDS_CREDENTIALS_TIMEOUT", default="2.0")),
        use_token=_flag(_env("IMDS_CREDENTIALS_USE_TOKEN", default="false")),
        token_ttl=int(_env("IMDS_CREDENTIALS_TOKEN_TTL", default="21600")),
        safety_margin=int(_env("IMDS_CREDENTIALS_SAFETY_MARGIN", default="240")),
        min_refresh_delay=float(_env("IMDS_CREDENTIALS_MIN_REFRESH_DELAY", default="1.0")),
        retry_delay=float(_env("IMDS_CREDENTIALS_RETRY_DELAY", default="30")),
        max_retry_delay=float(_env("IMDS_CREDENTIALS_MAX_RETRY_DELAY", default="60")),
    )


@lru_cache(maxsize=1)
def get_config() -> Config:
    """Load and cache the full application configuration."""
    project_root = _find_project_root()

    # Load .env from project root if it exists
    env_path = project_root / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    settings = _load_settings()
    paths = _load_paths(project_root)

    return Config(settings=settings, paths=paths)
