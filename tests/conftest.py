"""Shared pytest fixtures for identity store tests.

Uses the in-memory document store so that tests never touch a real
Elasticsearch cluster.  Repository operations are coroutines; tests drive
them with ``asyncio.run``.
"""

from __future__ import annotations

import asyncio

import pytest

from elastic_identity.store.memory import InMemoryDocumentStore
from elastic_identity.users.models import IdentityRecord, UserEmail, UserPhone
from elastic_identity.users.repository import UserRepository

TEST_INDEX = "elasticidentity-tests"


# ---------------------------------------------------------------------------
# Store and repository
# ---------------------------------------------------------------------------

@pytest.fixture()
def store() -> InMemoryDocumentStore:
    """Provide a fresh, empty in-memory store."""
    return InMemoryDocumentStore()


@pytest.fixture()
def trace_lines() -> list[str]:
    """Collects every diagnostic line passed to the trace hook."""
    return []


@pytest.fixture()
def repository(store: InMemoryDocumentStore, trace_lines: list[str]) -> UserRepository:
    """Return a repository over the test store with tracing captured."""
    return UserRepository(
        store,
        index_name=TEST_INDEX,
        force_recreate=True,
        on_trace=trace_lines.append,
    )


@pytest.fixture()
def strict_repository(store: InMemoryDocumentStore) -> UserRepository:
    """Return a repository that raises ``NotFound`` for missing users."""
    return UserRepository(store, index_name=TEST_INDEX, strict_not_found=True)


@pytest.fixture()
def run():
    """Run a coroutine to completion on a fresh event loop."""
    return asyncio.run


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------

@pytest.fixture()
def new_user() -> IdentityRecord:
    """An unpersisted user with contact details and an opaque credential."""
    record = IdentityRecord(
        user_name="Testuser",
        phone=UserPhone(number="555 123 1234", confirmed=True),
        email=UserEmail(address="Hello@World.com", confirmed=False),
    )
    record.credential.password_hash = "$argon2id$v=19$m=65536,t=3,p=4$c2FsdA$aGFzaA"
    record.credential.security_stamp = "6f1c2d3e-stamp"
    return record


@pytest.fixture()
def seed_users(run, repository: UserRepository) -> dict[str, IdentityRecord]:
    """Persist three users and return them keyed by name."""

    async def _seed() -> dict[str, IdentityRecord]:
        users = {}
        for name in ("admin", "operator", "viewer"):
            record = IdentityRecord(
                user_name=name,
                email=UserEmail(address=f"{name}@test.local"),
            )
            users[name] = await repository.create(record)
        return users

    return run(_seed())
