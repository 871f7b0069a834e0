"""Tests for the versioned document repository."""

from __future__ import annotations

import asyncio
import logging

import pytest

from elastic_identity.core.errors import (
    DuplicateDocument,
    InvalidArgument,
    NotFound,
    StoreError,
    VersionConflict,
)
from elastic_identity.store.memory import InMemoryDocumentStore
from elastic_identity.users.models import IdentityRecord, UserEmail, UserLogin
from elastic_identity.users.repository import UserRepository


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class _PartialSearchStore(InMemoryDocumentStore):
    """Every search reports that it timed out before visiting all shards."""

    async def search(self, index, query, **kwargs):
        result = await super().search(index, query, **kwargs)
        return result.model_copy(update={"timed_out": True})


class _VersionlessSearchStore(InMemoryDocumentStore):
    """Search hits come back without version metadata."""

    async def search(self, index, query, **kwargs):
        result = await super().search(index, query, **kwargs)
        hits = [hit.model_copy(update={"version": None}) for hit in result.hits]
        return result.model_copy(update={"hits": hits})


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------

class TestCreate:
    """create(record)"""

    def test_create_then_find_by_id(self, run, repository, new_user):
        """The stored record comes back normalized, with the first version."""

        async def scenario():
            await repository.create(new_user)
            return await repository.find_by_id(new_user.id)

        found = run(scenario())
        assert found is not None
        assert found.id == new_user.id
        assert found.version == 1
        assert found.user_name == "testuser"
        assert found.email.address == "hello@world.com"
        assert found.email.confirmed is False
        assert found.phone.number == "555 123 1234"
        assert found.phone.confirmed is True
        assert found.credential.password_hash == new_user.credential.password_hash

    def test_create_generates_id_and_patches_version(self, run, repository):
        """A record without an id receives a generated one."""
        record = IdentityRecord(user_name="someone")
        run(repository.create(record))
        assert record.id
        assert len(record.id) == 32
        assert record.version == 1

    def test_create_keeps_caller_supplied_id(self, run, repository):
        record = IdentityRecord(id="user-42", user_name="someone")
        run(repository.create(record))
        assert record.id == "user-42"

    def test_create_duplicate_id_fails(self, run, repository):
        """A second create with the same id is rejected, never overwritten."""

        async def scenario():
            await repository.create(IdentityRecord(id="dup", user_name="first"))
            with pytest.raises(DuplicateDocument):
                await repository.create(IdentityRecord(id="dup", user_name="second"))
            return await repository.find_by_id("dup")

        found = run(scenario())
        assert found.user_name == "first"
        assert found.version == 1

    def test_duplicate_is_a_version_conflict(self):
        assert issubclass(DuplicateDocument, VersionConflict)

    def test_create_none_raises_before_io(self, run, repository, store):
        with pytest.raises(InvalidArgument):
            run(repository.create(None))
        assert store.calls == []

    def test_failed_create_leaves_record_unversioned(self, run, repository):
        """A rejected create does not patch a version onto the record."""

        async def scenario():
            first = await repository.create(IdentityRecord(user_name="first"))
            clash = IdentityRecord(id=first.id, user_name="second")
            with pytest.raises(DuplicateDocument):
                await repository.create(clash)
            return clash

        clash = run(scenario())
        assert clash.version is None


# ---------------------------------------------------------------------------
# Update
# ---------------------------------------------------------------------------

class TestUpdate:
    """update(record) with optimistic concurrency."""

    def test_update_bumps_version(self, run, repository, new_user):
        async def scenario():
            await repository.create(new_user)
            user = await repository.find_by_id(new_user.id)
            user.roles.add("hello")
            await repository.update(user)
            return user, await repository.find_by_id(new_user.id)

        user, reread = run(scenario())
        assert user.version == 2
        assert reread.version == 2
        assert "hello" in reread.roles

    def test_stale_copy_is_rejected(self, run, repository, new_user):
        """create u1, read it (v1), update it (v2), update the stale v1 copy."""

        async def scenario():
            await repository.create(new_user)
            fresh = await repository.find_by_id(new_user.id)
            stale = await repository.find_by_id(new_user.id)
            assert fresh.version == stale.version == 1

            fresh.roles.add("another_role")
            await repository.update(fresh)

            stale.roles.add("bad_role")
            with pytest.raises(VersionConflict):
                await repository.update(stale)
            return stale, await repository.find_by_id(new_user.id)

        stale, stored = run(scenario())
        assert stale.version == 1
        assert stored.version == 2
        assert stored.roles == {"another_role"}

    def test_concurrent_updates_single_winner(self, run, repository, new_user):
        """Two writers holding the same version: exactly one succeeds."""

        async def scenario():
            await repository.create(new_user)
            first = await repository.find_by_id(new_user.id)
            second = await repository.find_by_id(new_user.id)
            first.roles.add("first")
            second.roles.add("second")
            outcomes = await asyncio.gather(
                repository.update(first),
                repository.update(second),
                return_exceptions=True,
            )
            return outcomes, await repository.find_by_id(new_user.id)

        outcomes, stored = run(scenario())
        conflicts = [o for o in outcomes if isinstance(o, VersionConflict)]
        winners = [o for o in outcomes if isinstance(o, IdentityRecord)]
        assert len(conflicts) == 1
        assert len(winners) == 1
        assert stored.roles == winners[0].roles
        assert stored.version == 2

    def test_update_of_never_created_user_conflicts(self, run, repository, store):
        ghost = IdentityRecord(id="ghost", user_name="ghost")
        with pytest.raises(VersionConflict):
            run(repository.update(ghost))
        assert run(store.get(repository.index_name, "ghost")).found is False
        assert ghost.version is None

    def test_update_after_delete_conflicts(self, run, repository, store, new_user):
        """A copy read before the delete cannot bring the user back."""

        async def scenario():
            await repository.create(new_user)
            stale = await repository.find_by_id(new_user.id)
            await repository.delete(new_user)
            stale.roles.add("revived")
            with pytest.raises(VersionConflict):
                await repository.update(stale)
            return await store.get(repository.index_name, new_user.id)

        assert run(scenario()).found is False

    def test_update_after_recreate_with_same_id_conflicts(self, run, repository):
        """Same id and version, but a different write: the old copy is stale."""

        async def scenario():
            original = await repository.create(IdentityRecord(id="reused", user_name="first"))
            stale = await repository.find_by_id("reused")
            await repository.delete(original)
            await repository.create(IdentityRecord(id="reused", user_name="second"))
            with pytest.raises(VersionConflict):
                await repository.update(stale)
            return await repository.find_by_id("reused")

        stored = run(scenario())
        assert stored.user_name == "second"
        assert stored.version == 1

    def test_update_requires_id(self, run, repository):
        with pytest.raises(InvalidArgument):
            run(repository.update(IdentityRecord(user_name="nobody")))
        with pytest.raises(InvalidArgument):
            run(repository.update(None))


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------

class TestDelete:
    """delete(record)"""

    def test_delete_then_lookups_return_none(self, run, repository, new_user):
        async def scenario():
            await repository.create(new_user)
            await repository.delete(new_user)
            return (
                await repository.find_by_id(new_user.id),
                await repository.find_by_name(new_user.user_name),
            )

        assert run(scenario()) == (None, None)

    def test_delete_in_strict_mode_then_lookup_raises(self, run, strict_repository, new_user):
        async def scenario():
            await strict_repository.create(new_user)
            await strict_repository.delete(new_user)
            with pytest.raises(NotFound):
                await strict_repository.find_by_id(new_user.id)
            with pytest.raises(NotFound):
                await strict_repository.find_by_name(new_user.user_name)

        run(scenario())

    def test_delete_with_stale_version_conflicts(self, run, repository, new_user):
        async def scenario():
            await repository.create(new_user)
            stale = await repository.find_by_id(new_user.id)
            await repository.update(new_user)
            with pytest.raises(VersionConflict):
                await repository.delete(stale)
            return await repository.find_by_id(new_user.id)

        assert run(scenario()) is not None

    def test_delete_missing_is_noop_unless_strict(self, run, repository, strict_repository):
        ghost = IdentityRecord(id="ghost", version=1, user_name="ghost")
        run(repository.delete(ghost))
        with pytest.raises(NotFound):
            run(strict_repository.delete(ghost))

    def test_delete_requires_id_and_version(self, run, repository):
        with pytest.raises(InvalidArgument):
            run(repository.delete(IdentityRecord(user_name="x", version=1)))
        with pytest.raises(InvalidArgument):
            run(repository.delete(IdentityRecord(id="x", user_name="x")))


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

class TestLookups:
    """find_by_id / find_by_name / find_by_email / find_by_login"""

    def test_find_by_id_missing_returns_none(self, run, repository):
        assert run(repository.find_by_id("missing")) is None

    def test_find_by_id_missing_strict_raises(self, run, strict_repository):
        with pytest.raises(NotFound):
            run(strict_repository.find_by_id("missing"))

    def test_find_by_id_requires_id(self, run, repository):
        with pytest.raises(InvalidArgument):
            run(repository.find_by_id(None))
        with pytest.raises(InvalidArgument):
            run(repository.find_by_id(""))

    def test_find_by_name_is_case_insensitive(self, run, repository, new_user):
        async def scenario():
            await repository.create(new_user)
            return (
                await repository.find_by_name("Testuser"),
                await repository.find_by_name("TESTUSER"),
            )

        lower, upper = run(scenario())
        assert lower is not None and upper is not None
        assert lower.id == upper.id == new_user.id
        assert lower.version == 1

    def test_find_by_email_is_case_insensitive(self, run, repository):
        async def scenario():
            u1 = IdentityRecord(user_name="u1", email=UserEmail(address="hello@world.com"))
            await repository.create(u1)
            return u1, await repository.find_by_email("HELLO@WORLD.com")

        u1, found = run(scenario())
        assert found is not None
        assert found.id == u1.id
        assert found.email_address == "hello@world.com"

    def test_find_by_name_no_match(self, run, repository, seed_users):
        assert run(repository.find_by_name("nobody")) is None

    def test_find_by_name_requires_name(self, run, repository):
        with pytest.raises(InvalidArgument):
            run(repository.find_by_name(None))
        with pytest.raises(InvalidArgument):
            run(repository.find_by_email(None))

    def test_ambiguous_name_returns_first_hit(self, run, repository, caplog):
        async def scenario():
            await repository.create(IdentityRecord(id="a", user_name="twin"))
            await repository.create(IdentityRecord(id="b", user_name="Twin"))
            return await repository.find_by_name("twin")

        with caplog.at_level("WARNING"):
            found = run(scenario())
        assert found.id in {"a", "b"}
        assert "2 users match" in caplog.text

    def test_find_by_login_matches_any_entry(self, run, repository):
        """Any login entry matches, not only the first one."""

        async def scenario():
            record = IdentityRecord(user_name="social")
            repository.add_login(record, UserLogin(login_provider="google", provider_key="g-1"))
            repository.add_login(record, UserLogin(login_provider="github", provider_key="gh-7"))
            await repository.create(record)
            return (
                record,
                await repository.find_by_login("github", "gh-7"),
                await repository.find_by_login("google", "g-1"),
            )

        record, by_second, by_first = run(scenario())
        assert by_second.id == record.id
        assert by_first.id == record.id
        assert by_second.version == 1

    def test_find_by_login_requires_same_entry(self, run, repository):
        """Provider and key must come from one entry."""

        async def scenario():
            record = IdentityRecord(user_name="social")
            repository.add_login(record, UserLogin(login_provider="google", provider_key="g-1"))
            repository.add_login(record, UserLogin(login_provider="github", provider_key="gh-7"))
            await repository.create(record)
            return await repository.find_by_login("google", "gh-7")

        assert run(scenario()) is None

    def test_partial_search_returns_none(self, run, new_user):
        repository = UserRepository(_PartialSearchStore(), strict_not_found=True)

        async def scenario():
            await repository.create(new_user)
            return (
                await repository.find_by_name(new_user.user_name),
                await repository.find_by_email(new_user.email_address),
            )

        assert run(scenario()) == (None, None)

    def test_partial_search_is_logged(self, run, caplog, new_user):
        repository = UserRepository(_PartialSearchStore())

        async def scenario():
            await repository.create(new_user)
            return await repository.find_by_name(new_user.user_name)

        with caplog.at_level(logging.WARNING, logger="elastic_identity.users.repository"):
            assert run(scenario()) is None
        assert "partial result" in caplog.text

    @pytest.mark.parametrize("strict", [False, True])
    def test_hit_without_version_is_a_store_error(self, run, new_user, strict):
        repository = UserRepository(_VersionlessSearchStore(), strict_not_found=strict)

        async def scenario():
            await repository.create(new_user)
            await repository.find_by_name(new_user.user_name)

        with pytest.raises(StoreError) as excinfo:
            run(scenario())
        assert excinfo.value.debug.startswith("POST /users/_search -> 200")

    def test_find_by_login_requires_both_parts(self, run, repository):
        with pytest.raises(InvalidArgument):
            run(repository.find_by_login(None, "key"))
        with pytest.raises(InvalidArgument):
            run(repository.find_by_login("google", None))


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------

class TestListing:
    """list_all / list_page"""

    def test_list_all_returns_every_user(self, run, repository, seed_users):
        users = run(repository.list_all())
        assert {u.user_name for u in users} == {"admin", "operator", "viewer"}
        assert all(u.version == 1 for u in users)

    def test_list_all_is_bounded_by_default_page(self, run, repository, caplog):
        async def scenario():
            for i in range(12):
                await repository.create(IdentityRecord(user_name=f"user{i:02d}"))
            return await repository.list_all()

        with caplog.at_level("WARNING"):
            users = run(scenario())
        assert len(users) == 10
        assert "10 of 12" in caplog.text

    def test_list_page_walks_whole_collection(self, run, repository):
        async def scenario():
            for i in range(12):
                await repository.create(IdentityRecord(id=f"id-{i:02d}", user_name=f"user{i:02d}"))
            pages = []
            token = None
            while True:
                page = await repository.list_page(size=5, after=token)
                pages.append(page)
                token = page.next_token
                if token is None:
                    return pages

        pages = run(scenario())
        assert [len(p.records) for p in pages] == [5, 5, 2]
        ids = [r.id for p in pages for r in p.records]
        assert ids == [f"id-{i:02d}" for i in range(12)]

    def test_list_page_rejects_bad_size(self, run, repository):
        with pytest.raises(InvalidArgument):
            run(repository.list_page(size=0))


# ---------------------------------------------------------------------------
# Tracing and setup
# ---------------------------------------------------------------------------

class TestTracing:
    """The trace hook receives every store call."""

    def test_every_call_is_traced(self, run, repository, store, trace_lines, new_user):
        async def scenario():
            await repository.create(new_user)
            await repository.find_by_id(new_user.id)

        run(scenario())
        assert len(trace_lines) == len(store.calls)
        assert trace_lines[0].startswith("HEAD /elasticidentity-tests")
        assert any("_create" in line for line in trace_lines)

    def test_failed_calls_are_traced(self, run, repository, trace_lines):
        async def scenario():
            await repository.create(IdentityRecord(id="x", user_name="x"))
            with pytest.raises(DuplicateDocument):
                await repository.create(IdentityRecord(id="x", user_name="x"))

        run(scenario())
        assert "409" in trace_lines[-1]

    def test_provisioning_happens_once(self, run, repository, store, seed_users):
        run(repository.find_by_name("admin"))
        assert [c for c in store.calls if c[0] == "create_index"] == [("create_index", "elasticidentity-tests")]
        assert repository.index_created is True


class TestConstruction:
    def test_store_is_required(self):
        with pytest.raises(InvalidArgument):
            UserRepository(None)

    def test_index_name_must_be_lowercase(self, store):
        with pytest.raises(InvalidArgument):
            UserRepository(store, index_name="Users")

    def test_context_manager_closes_store(self, run, store):
        closed = []

        async def close():
            closed.append(True)

        store.close = close

        async def scenario():
            async with UserRepository(store) as repo:
                await repo.setup()

        run(scenario())
        assert closed == [True]
