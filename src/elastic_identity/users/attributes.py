"""In-memory account attribute mutators.

None of these touch the store: they change the record passed in and the
caller persists it afterwards with ``UserRepository.update``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from elastic_identity.core.errors import InvalidArgument, InvalidOperation
from elastic_identity.users.models import IdentityRecord, UserClaim, UserEmail, UserLogin, UserPhone


def _require(value: Any, name: str) -> None:
    if value is None:
        raise InvalidArgument(f"{name} is required")


class UserAttributeMixin:
    """Login, claim, role, credential, contact, lockout and 2FA accessors."""

    # ------------------------------------------------------------------
    # Logins
    # ------------------------------------------------------------------

    def add_login(self, record: IdentityRecord, login: UserLogin) -> None:
        _require(record, "record")
        _require(login, "login")
        record.logins.append(UserLogin(login_provider=login.login_provider, provider_key=login.provider_key))

    def remove_login(self, record: IdentityRecord, login: UserLogin) -> None:
        """Remove every entry with the same provider and key."""
        _require(record, "record")
        _require(login, "login")
        record.logins[:] = [
            entry
            for entry in record.logins
            if not (entry.login_provider == login.login_provider and entry.provider_key == login.provider_key)
        ]

    def get_logins(self, record: IdentityRecord) -> list[UserLogin]:
        _require(record, "record")
        return list(record.logins)

    # ------------------------------------------------------------------
    # Claims
    # ------------------------------------------------------------------

    def add_claim(self, record: IdentityRecord, claim: UserClaim) -> None:
        _require(record, "record")
        _require(claim, "claim")
        record.claims.add(claim)

    def remove_claim(self, record: IdentityRecord, claim: UserClaim) -> None:
        _require(record, "record")
        _require(claim, "claim")
        record.claims.discard(claim)

    def get_claims(self, record: IdentityRecord) -> list[UserClaim]:
        _require(record, "record")
        return list(record.claims)

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def add_to_role(self, record: IdentityRecord, role: str) -> None:
        _require(record, "record")
        _require(role, "role")
        record.roles.add(role)

    def remove_from_role(self, record: IdentityRecord, role: str) -> None:
        _require(record, "record")
        _require(role, "role")
        record.roles.discard(role)

    def get_roles(self, record: IdentityRecord) -> list[str]:
        _require(record, "record")
        return sorted(record.roles)

    def is_in_role(self, record: IdentityRecord, role: str) -> bool:
        _require(record, "record")
        _require(role, "role")
        return role in record.roles

    # ------------------------------------------------------------------
    # Credential
    # ------------------------------------------------------------------

    def set_password_hash(self, record: IdentityRecord, password_hash: str | None) -> None:
        _require(record, "record")
        record.credential.password_hash = password_hash

    def get_password_hash(self, record: IdentityRecord) -> str | None:
        _require(record, "record")
        return record.credential.password_hash

    def has_password(self, record: IdentityRecord) -> bool:
        _require(record, "record")
        return record.credential.password_hash is not None

    def set_security_stamp(self, record: IdentityRecord, stamp: str | None) -> None:
        _require(record, "record")
        record.credential.security_stamp = stamp

    def get_security_stamp(self, record: IdentityRecord) -> str | None:
        _require(record, "record")
        return record.credential.security_stamp

    # ------------------------------------------------------------------
    # Two-factor
    # ------------------------------------------------------------------

    def set_two_factor_enabled(self, record: IdentityRecord, enabled: bool) -> None:
        _require(record, "record")
        record.two_factor_enabled = enabled

    def get_two_factor_enabled(self, record: IdentityRecord) -> bool:
        _require(record, "record")
        return record.two_factor_enabled

    # ------------------------------------------------------------------
    # Email
    # ------------------------------------------------------------------

    def set_email(self, record: IdentityRecord, email: str | None) -> None:
        """Replace the address; a new address starts unconfirmed."""
        _require(record, "record")
        record.email = None if email is None else UserEmail(address=email)

    def get_email(self, record: IdentityRecord) -> str | None:
        _require(record, "record")
        return record.email_address

    def get_email_confirmed(self, record: IdentityRecord) -> bool:
        _require(record, "record")
        return record.email is not None and record.email.confirmed

    def set_email_confirmed(self, record: IdentityRecord, confirmed: bool) -> None:
        _require(record, "record")
        if record.email is None:
            raise InvalidOperation("User has no configured email address")
        record.email.confirmed = confirmed

    # ------------------------------------------------------------------
    # Phone
    # ------------------------------------------------------------------

    def set_phone_number(self, record: IdentityRecord, number: str | None) -> None:
        _require(record, "record")
        record.phone = None if number is None else UserPhone(number=number)

    def get_phone_number(self, record: IdentityRecord) -> str | None:
        _require(record, "record")
        return record.phone.number if record.phone is not None else None

    def get_phone_number_confirmed(self, record: IdentityRecord) -> bool:
        _require(record, "record")
        return record.phone is not None and record.phone.confirmed

    def set_phone_number_confirmed(self, record: IdentityRecord, confirmed: bool) -> None:
        _require(record, "record")
        if record.phone is None:
            raise InvalidOperation("User has no configured phone number")
        record.phone.confirmed = confirmed

    # ------------------------------------------------------------------
    # Lockout
    # ------------------------------------------------------------------

    def get_lockout_end_date(self, record: IdentityRecord) -> datetime | None:
        _require(record, "record")
        return record.lockout.end_date

    def set_lockout_end_date(self, record: IdentityRecord, end_date: datetime | None) -> None:
        _require(record, "record")
        record.lockout.end_date = end_date

    def increment_access_failed_count(self, record: IdentityRecord) -> int:
        """Bump the failure counter and return its new value."""
        _require(record, "record")
        record.lockout.access_failed_count += 1
        return record.lockout.access_failed_count

    def reset_access_failed_count(self, record: IdentityRecord) -> None:
        _require(record, "record")
        record.lockout.access_failed_count = 0

    def get_access_failed_count(self, record: IdentityRecord) -> int:
        _require(record, "record")
        return record.lockout.access_failed_count

    def get_lockout_enabled(self, record: IdentityRecord) -> bool:
        _require(record, "record")
        return record.lockout.enabled

    def set_lockout_enabled(self, record: IdentityRecord, enabled: bool) -> None:
        _require(record, "record")
        record.lockout.enabled = enabled
