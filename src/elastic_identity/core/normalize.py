"""Canonical comparison form for user-supplied lookup keys.

The same projection is applied when a name or email is written and when it is
queried; any asymmetry between the two turns exact-match lookups into false
negatives.
"""

from __future__ import annotations


def normalize_key(value: str | None) -> str | None:
    """Return the lowercase projection of *value*.

    ``str.lower`` follows the Unicode default case mapping and does not
    depend on the host locale.  ``None`` is passed through unchanged.
    """
    if value is None:
        return None
    return value.lower()


def normalize_user_name(user_name: str | None) -> str | None:
    """Normalize a user name for storage and lookup."""
    return normalize_key(user_name)


def normalize_email(address: str | None) -> str | None:
    """Normalize an email address for storage and lookup."""
    return normalize_key(address)
