"""Tests for SyncCoordinator save, delete and refresh."""

import asyncio
import gc
from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest

from entity_mirror import (
    AccessPolicy,
    Entity,
    NotPersistedError,
    Permission,
    RecordNotFoundError,
    Reference,
    RemoteError,
    RemoteService,
    SyncCoordinator,
    SyncState,
    UnresolvedReferenceError,
    UpdateResult,
    UsageAfterDeleteError,
)
from entity_mirror.remote import FieldDiff


class TestSave:
    """Tests for saving single entities."""

    @pytest.mark.asyncio
    async def test_create_note(self, coordinator, remote):
        """New entity is created with all fields, then clean."""
        note = Entity("Note")
        note.set("title", "Hi")
        note.set("body", "World")

        await coordinator.save(note)

        assert remote.calls == [("create", "Note", {"title": "Hi", "body": "World"})]
        assert note.identity is not None
        assert note.created_at is not None
        assert note.updated_at == note.created_at
        assert not note.is_dirty()
        assert note.state == SyncState.SAVED
        assert remote.record("Note", note.identity).fields == {"title": "Hi", "body": "World"}

    @pytest.mark.asyncio
    async def test_save_clean_entity_is_noop(self, coordinator, remote):
        note = Entity.from_record("Note", "abc123", {"title": "Hi"})
        result = await coordinator.save(note)
        assert result is note
        assert remote.calls == []

    @pytest.mark.asyncio
    async def test_second_save_without_changes_is_noop(self, coordinator, remote):
        note = Entity("Note", {"title": "Hi"})
        await coordinator.save(note)
        await coordinator.save(note)
        assert remote.operations() == [("create", "Note")]

    @pytest.mark.asyncio
    async def test_update_sends_only_changed_fields(self, coordinator, remote):
        note = Entity("Note", {"title": "Hi", "body": "World"})
        await coordinator.save(note)
        created_at = note.created_at

        note["title"] = "Changed"
        note.remove("body")
        await coordinator.save(note)

        operation, kind, identity, diff = remote.calls[-1]
        assert (operation, kind, identity) == ("update", "Note", note.identity)
        assert diff.sets == {"title": "Changed"}
        assert diff.removals == {"body"}
        assert note.pending_removals == frozenset()
        assert not note.is_dirty()
        assert note.created_at == created_at
        assert note.updated_at > created_at
        assert remote.record("Note", note.identity).fields == {"title": "Changed"}

    @pytest.mark.asyncio
    async def test_removal_of_never_seen_field_is_sent(self, coordinator, remote):
        note = Entity("Note", {"title": "Hi"})
        await coordinator.save(note)
        remote.record("Note", note.identity).fields["legacy"] = "old"

        stale = Entity.from_record("Note", note.identity, {"title": "Hi"})
        stale.remove("legacy")
        await coordinator.save(stale)

        assert remote.calls[-1][3].removals == {"legacy"}
        assert "legacy" not in remote.record("Note", note.identity).fields

    @pytest.mark.asyncio
    async def test_create_does_not_send_removals(self, coordinator, remote):
        note = Entity("Note", {"title": "Hi"})
        note.remove("body")
        await coordinator.save(note)
        assert remote.calls == [("create", "Note", {"title": "Hi"})]
        assert note.pending_removals == frozenset()

    @pytest.mark.asyncio
    async def test_references_are_resolved(self, coordinator, remote):
        author = Entity("Author", {"name": "Ada"})
        await coordinator.save(author)

        note = Entity("Note", {"author": author, "tags": [Reference("Tag", "t1")]})
        await coordinator.save(note)

        sent = remote.calls[-1][2]
        assert sent["author"] == Reference("Author", author.identity)
        assert sent["author"].target is None
        assert sent["tags"] == [Reference("Tag", "t1")]

    @pytest.mark.asyncio
    async def test_reference_made_before_target_saved_resolves_later(self, coordinator, remote):
        author = Entity("Author")
        note = Entity("Note", {"author": author})
        await coordinator.save(author)
        await coordinator.save(note)
        assert remote.calls[-1][2]["author"].identity == author.identity

    @pytest.mark.asyncio
    async def test_reference_outlives_saved_target(self, coordinator, remote):
        author = Entity("Author", {"name": "Ada"})
        note = Entity("Note", {"title": "Hi", "author": author})
        await coordinator.save(author)
        identity = author.identity

        del author
        gc.collect()
        await coordinator.save(note)

        assert remote.calls[-1][2]["author"] == Reference("Author", identity)
        assert remote.record("Note", note.identity).fields["author"].identity == identity

    @pytest.mark.asyncio
    async def test_unresolved_reference_fails_without_side_effects(self, coordinator, remote):
        author = Entity("Author", {"name": "Ada"})
        note = Entity("Note", {"title": "Hi", "author": author})

        with pytest.raises(UnresolvedReferenceError) as exc_info:
            await coordinator.save(note)

        assert exc_info.value.field == "author"
        assert remote.calls == []
        assert note.identity is None and author.identity is None
        assert note.state == SyncState.UNSAVED
        assert author.state == SyncState.UNSAVED
        assert note.dirty_keys == {"title", "author"}

    @pytest.mark.asyncio
    async def test_remote_failure_keeps_local_state(self, coordinator, remote):
        remote.fail("create", error=ConnectionError("offline"))
        note = Entity("Note", {"title": "Hi"})

        with pytest.raises(RemoteError) as exc_info:
            await coordinator.save(note)

        assert isinstance(exc_info.value.cause, ConnectionError)
        assert isinstance(exc_info.value.__cause__, ConnectionError)
        assert note.state == SyncState.SAVE_FAILED
        assert note.identity is None
        assert note.is_dirty()
        assert note.dirty_keys == {"title"}

    @pytest.mark.asyncio
    async def test_retry_after_failure(self, coordinator, remote):
        note = Entity("Note", {"title": "Hi"})
        await coordinator.save(note)
        note["title"] = "Changed"

        remote.fail("update")
        with pytest.raises(RemoteError):
            await coordinator.save(note)
        assert note.dirty_keys == {"title"}

        remote.clear_failures()
        await coordinator.save(note)
        assert not note.is_dirty()
        assert remote.record("Note", note.identity).fields == {"title": "Changed"}

    @pytest.mark.asyncio
    async def test_field_changed_during_save_stays_dirty(self, coordinator, remote):
        note = Entity("Note", {"title": "Hi", "body": "World"})
        remote.hold()

        task = asyncio.create_task(coordinator.save(note))
        await remote.entered.wait()
        assert note.state == SyncState.SAVING
        note["title"] = "Edited mid-flight"
        remote.release()
        await task

        assert note.identity is not None
        assert note.is_dirty()
        assert note.dirty_keys == {"title"}
        assert remote.record("Note", note.identity).fields["title"] == "Hi"

        remote.gate = None
        await coordinator.save(note)
        assert remote.calls[-1][3].sets == {"title": "Edited mid-flight"}
        assert not note.is_dirty()

    @pytest.mark.asyncio
    async def test_reassigned_policy_is_saved(self, coordinator, remote):
        note = Entity("Note", {"title": "Hi"}, policy=AccessPolicy())
        await coordinator.save(note)

        policy = note.policy
        policy.allow("*", Permission.READ)
        assert not note.is_dirty()
        note.policy = policy
        await coordinator.save(note)

        operation, _, _, diff = remote.calls[-1]
        assert operation == "update"
        assert set(diff.sets) == {"ACL"}
        assert diff.sets["ACL"].public_read

    @pytest.mark.asyncio
    async def test_policy_is_sent_under_acl(self, coordinator, remote):
        policy = AccessPolicy().allow("user-1", Permission.READ)
        note = Entity("Note", {"title": "Hi"}, policy=policy)
        await coordinator.save(note)
        assert remote.calls[-1][2]["ACL"] == policy


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_requires_identity(self, coordinator, remote):
        with pytest.raises(NotPersistedError):
            await coordinator.delete(Entity("Note"))
        assert remote.calls == []

    @pytest.mark.asyncio
    async def test_delete_then_any_use_fails(self, coordinator, remote):
        note = Entity("Note", {"title": "Hi"})
        await coordinator.save(note)
        await coordinator.delete(note)

        assert note.state == SyncState.DELETED
        assert remote.record("Note", note.identity) is None

        with pytest.raises(UsageAfterDeleteError):
            note.get("title")
        with pytest.raises(UsageAfterDeleteError):
            note.set("title", "x")
        with pytest.raises(UsageAfterDeleteError):
            note.remove("title")
        with pytest.raises(UsageAfterDeleteError):
            _ = note.policy
        with pytest.raises(UsageAfterDeleteError):
            await coordinator.save(note)
        with pytest.raises(UsageAfterDeleteError):
            await coordinator.delete(note)
        with pytest.raises(UsageAfterDeleteError):
            await coordinator.refresh(note)

    @pytest.mark.asyncio
    async def test_delete_failure(self, coordinator, remote):
        note = Entity("Note", {"title": "Hi"})
        await coordinator.save(note)
        remote.fail("delete")

        with pytest.raises(RemoteError):
            await coordinator.delete(note)

        assert note.state == SyncState.DELETE_FAILED
        assert note.get("title") == "Hi"

    @pytest.mark.asyncio
    async def test_delete_missing_record_is_remote_error(self, coordinator):
        ghost = Entity.without_data("Note", "missing1")
        with pytest.raises(RemoteError) as exc_info:
            await coordinator.delete(ghost)
        assert isinstance(exc_info.value.cause, RecordNotFoundError)


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_requires_identity(self, coordinator):
        with pytest.raises(NotPersistedError):
            await coordinator.refresh(Entity("Note"))

    @pytest.mark.asyncio
    async def test_save_then_refresh_round_trip(self, coordinator):
        note = Entity("Note", {"title": "Hi", "count": 3, "tags": ["a", "b"]})
        await coordinator.save(note)
        before = note.fields

        await coordinator.refresh(note)

        assert note.fields == before
        assert not note.is_dirty()

    @pytest.mark.asyncio
    async def test_refresh_discards_local_changes(self, coordinator, remote):
        note = Entity("Note", {"title": "Hi"})
        await coordinator.save(note)
        remote.record("Note", note.identity).fields["body"] = "Server body"

        note["title"] = "Local edit"
        note.remove("other")
        await coordinator.refresh(note)

        assert note.fields == {"title": "Hi", "body": "Server body"}
        assert note.pending_removals == frozenset()
        assert not note.is_dirty()
        assert note.state == SyncState.SAVED

    @pytest.mark.asyncio
    async def test_refresh_failure_keeps_local_state(self, coordinator, remote):
        note = Entity("Note", {"title": "Hi"})
        await coordinator.save(note)
        note["title"] = "Local edit"
        remote.fail("fetch")

        with pytest.raises(RemoteError):
            await coordinator.refresh(note)

        assert note.state == SyncState.REFRESH_FAILED
        assert note["title"] == "Local edit"
        assert note.is_dirty()

    @pytest.mark.asyncio
    async def test_refresh_restores_policy(self, coordinator):
        note = Entity("Note", policy=AccessPolicy().allow("*", Permission.READ))
        await coordinator.save(note)
        note.policy = None
        await coordinator.refresh(note)
        assert note.policy.public_read

    @pytest.mark.asyncio
    async def test_fetch_if_needed(self, coordinator, remote):
        note = Entity("Note", {"title": "Hi"})
        await coordinator.save(note)

        pointer = Entity.without_data("Note", note.identity)
        await coordinator.fetch_if_needed(pointer)
        assert pointer["title"] == "Hi"
        assert pointer.is_data_available

        calls = len(remote.calls)
        await coordinator.fetch_if_needed(pointer)
        assert len(remote.calls) == calls


class TestRemoteContract:
    """Calls made against a stubbed RemoteService."""

    @pytest.mark.asyncio
    async def test_update_call(self):
        remote = AsyncMock(spec=RemoteService)
        saved_at = datetime(2024, 1, 2, tzinfo=UTC)
        remote.update.return_value = UpdateResult(updated_at=saved_at)
        note = Entity.from_record("Note", "n1", {"title": "Hi", "body": "x"})
        note["title"] = "New"
        del note["body"]

        await SyncCoordinator(remote).save(note)

        remote.update.assert_awaited_once_with(
            "Note", "n1", FieldDiff(sets={"title": "New"}, removals=frozenset({"body"}))
        )
        remote.create.assert_not_awaited()
        assert note.updated_at == saved_at

    @pytest.mark.asyncio
    async def test_cancelled_save_restores_state(self):
        remote = AsyncMock(spec=RemoteService)
        remote.create.side_effect = asyncio.CancelledError()
        note = Entity("Note", {"title": "Hi"})

        with pytest.raises(asyncio.CancelledError):
            await SyncCoordinator(remote).save(note)

        assert note.state == SyncState.UNSAVED
        assert note.dirty_keys == {"title"}
