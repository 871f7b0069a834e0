"""Pydantic v2 models for the identity record and its parts.

Contains: IdentityRecord, UserEmail, UserPhone, Credential, UserLogin,
UserClaim, Lockout.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from elastic_identity.core.normalize import normalize_email, normalize_user_name


# ---------------------------------------------------------------------------
# Contact details
# ---------------------------------------------------------------------------

class UserEmail(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    address: str
    confirmed: bool = False

    @field_validator("address")
    @classmethod
    def _normalize_address(cls, value: str) -> str:
        return normalize_email(value)


class UserPhone(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    number: str
    confirmed: bool = False


# ---------------------------------------------------------------------------
# Credentials and external logins
# ---------------------------------------------------------------------------

class Credential(BaseModel):
    """Opaque credential material.  Never hashed or verified here."""

    password_hash: str | None = None
    security_stamp: str | None = None


class UserLogin(BaseModel):
    model_config = ConfigDict(frozen=True)

    login_provider: str
    provider_key: str


class UserClaim(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str
    value: str
    issuer: str | None = None


class Lockout(BaseModel):
    end_date: datetime | None = None
    access_failed_count: int = 0
    enabled: bool = False


# ---------------------------------------------------------------------------
# IdentityRecord
# ---------------------------------------------------------------------------

class IdentityRecord(BaseModel):
    """One user account, stored as one document.

    ``version``, ``seq_no`` and ``primary_term`` are store metadata: they are
    patched in from read and write responses and never serialized into the
    document body.  The latter two identify the last write and guard
    updates.  Subclasses may declare extra fields; they travel in the body
    like the built-in ones.
    """

    model_config = ConfigDict(validate_assignment=True)

    id: str | None = None
    version: int | None = Field(default=None, exclude=True)
    seq_no: int | None = Field(default=None, exclude=True)
    primary_term: int | None = Field(default=None, exclude=True)

    user_name: str
    email: UserEmail | None = None
    phone: UserPhone | None = None
    credential: Credential = Field(default_factory=Credential)
    logins: list[UserLogin] = Field(default_factory=list)
    claims: set[UserClaim] = Field(default_factory=set)
    roles: set[str] = Field(default_factory=set)
    lockout: Lockout = Field(default_factory=Lockout)
    two_factor_enabled: bool = False

    @field_validator("user_name")
    @classmethod
    def _normalize_user_name(cls, value: str) -> str:
        return normalize_user_name(value)

    @field_serializer("roles")
    def _serialize_roles(self, roles: set[str]) -> list[str]:
        return sorted(roles)

    @field_serializer("claims")
    def _serialize_claims(self, claims: set[UserClaim]) -> list[dict[str, Any]]:
        ordered = sorted(claims, key=lambda c: (c.type, c.value, c.issuer or ""))
        return [c.model_dump() for c in ordered]

    @property
    def current_version(self) -> int:
        """The version to present on the next write (``1`` until assigned)."""
        return self.version or 1

    @property
    def email_address(self) -> str | None:
        return self.email.address if self.email is not None else None

    def to_document(self) -> dict[str, Any]:
        """Return the JSON-serialisable document body."""
        return self.model_dump(mode="json")

    @classmethod
    def from_document(
        cls,
        source: dict[str, Any],
        doc_id: str,
        version: int | None,
        seq_no: int | None = None,
        primary_term: int | None = None,
    ):
        """Build a record from a stored body plus the store's metadata."""
        record = cls.model_validate(source)
        record.id = doc_id
        record.version = version
        record.seq_no = seq_no
        record.primary_term = primary_term
        return record

    def __str__(self) -> str:
        return self.user_name
