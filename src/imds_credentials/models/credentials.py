"""Credential-related data models."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class RoleCredentials(BaseModel):
    """Credential document for one IAM role, as served by the metadata service."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    access_key_id: str = Field(alias="AccessKeyId", min_length=1)
    secret_access_key: str = Field(alias="SecretAccessKey", min_length=1, repr=False)
    session_token: str | None = Field(default=None, alias="Token", repr=False)
    expiration: datetime = Field(alias="Expiration")
    code: str = Field(default="Success", alias="Code")
    last_updated: datetime | None = Field(default=None, alias="LastUpdated")
    type: str | None = Field(default=None, alias="Type")

    @field_validator("expiration", "last_updated")
    @classmethod
    def _to_utc(cls, value: datetime | None) -> datetime | None:
        # Expiration strings without an offset are UTC.
        return _as_utc(value) if value is not None else None


class IdentityDocument(BaseModel):
    """Instance identity document; only the region is required."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    region: str = Field(min_length=1)
    instance_id: str | None = Field(default=None, alias="instanceId")
    account_id: str | None = Field(default=None, alias="accountId")
    availability_zone: str | None = Field(default=None, alias="availabilityZone")


class CredentialSnapshot(BaseModel):
    """Immutable bundle of credentials, region and expiry.

    Superseded by the next snapshot, never edited.
    """
    model_config = ConfigDict(frozen=True)

    access_key_id: str
    secret_access_key: str = Field(repr=False)
    session_token: str | None = Field(default=None, repr=False)
    region: str
    expires_at: datetime
    role_name: str = ""
    fetched_at: datetime | None = None

    @classmethod
    def from_parts(
        cls,
        role_name: str,
        credentials: RoleCredentials,
        region: str,
        fetched_at: datetime,
    ) -> CredentialSnapshot:
        return cls(
            access_key_id=credentials.access_key_id,
            secret_access_key=credentials.secret_access_key,
            session_token=credentials.session_token,
            region=region,
            expires_at=credentials.expiration,
            role_name=role_name,
            fetched_at=fetched_at,
        )

    def seconds_remaining(self, now: datetime) -> float:
        return (self.expires_at - now).total_seconds()

    def age(self, now: datetime) -> timedelta:
        """Time since the snapshot was fetched."""
        if self.fetched_at is None:
            return timedelta(0)
        return now - self.fetched_at

    def as_env(self) -> dict[str, str]:
        """Render as the standard AWS environment variables."""
        env = {
            "AWS_ACCESS_KEY_ID": self.access_key_id,
            "AWS_SECRET_ACCESS_KEY": self.secret_access_key,
            "AWS_DEFAULT_REGION": self.region,
        }
        if self.session_token:
            env["AWS_SESSION_TOKEN"] = self.session_token
        return env


class ManagerState(str, Enum):
    CREATED = "created"
    INITIALIZING = "initializing"
    READY = "ready"
    REFRESHING = "refreshing"
    FAILED = "failed"
    STOPPED = "stopped"


class ManagerStatus(BaseModel):
    """Current state of the credential manager."""
    state: ManagerState
    has_snapshot: bool
    is_stale: bool
    expires_at: datetime | None = None
    seconds_remaining: int | None = None
    snapshot_age: float | None = None
    next_refresh_at: datetime | None = None
    consecutive_failures: int = 0
    last_error: dict[str, Any] | None = None
