"""
Tests for the local store, repositories and the persisted wire format.

Tests cover:
1. Document round-trip of persisted records
2. SqlLocalStore get/put/delete/scan and atomic rollback
3. Corrupt records are skipped, not fatal
4. Completion log dedup
"""
import pytest
from datetime import date, datetime, timezone

from habitsync.constants import EntityType, OperationKind, SyncStatus, XpEventType
from habitsync.models import StoredRecord
from habitsync.repositories.completion_repository import CompletionRepository
from habitsync.repositories.local_store import from_document, to_document
from habitsync.schemas import CompletionRecord, SyncOperation, XpEvent

NOW = datetime(2024, 6, 12, 12, 0, tzinfo=timezone.utc)


def completion(record_id="c1", habit_id="h1", logical_date=date(2024, 6, 12)):
    return CompletionRecord(
        id=record_id,
        habit_id=habit_id,
        user_id="u1",
        occurred_at=NOW,
        logical_date=logical_date,
        xp_awarded=60,
        was_bonus_day=True,
        notes="after work",
        created_at=NOW
    )


class TestWireFormat:
    """Persisted records serialize to snake_case JSON and back"""

    def test_completion_round_trip(self):
        """Should round-trip a completion through snake_case JSON"""
        record = completion()
        data = to_document(record)

        assert data["habit_id"] == "h1"
        assert data["logical_date"] == "2024-06-12"
        assert data["synced_at"] is None
        assert from_document(CompletionRecord, data) == record

    def test_xp_event_round_trip(self):
        """Should round-trip an XP event with its camelCase type value"""
        event = XpEvent(
            id="x1", user_id="u1", type=XpEventType.STREAK_30, amount=500, habit_id="h1",
            logical_date=date(2024, 6, 12), earned_at=NOW, created_at=NOW
        )
        data = to_document(event)

        assert data["type"] == "streak30"
        assert from_document(XpEvent, data) == event

    def test_sync_operation_round_trip(self):
        """Should round-trip a sync operation"""
        operation = SyncOperation(
            id="s1", kind=OperationKind.DELETE, entity_type="habit", entity_id="h1",
            payload={"id": "h1"}, status=SyncStatus.FAILED, enqueued_at=NOW,
            last_attempt_at=NOW, retry_count=2, last_error="timeout"
        )
        data = to_document(operation)

        assert data["kind"] == "delete"
        assert data["status"] == "failed"
        assert from_document(SyncOperation, data) == operation

    def test_invalid_document_returns_none(self):
        """Should return None for a document missing required fields"""
        assert from_document(CompletionRecord, {"id": "c1", "habit_id": "h1"}) is None


class TestSqlLocalStore:
    """Tests for SqlLocalStore"""

    def test_put_get_delete(self, store):
        """Should store, read and delete a document"""
        store.put("habit", "h1", {"id": "h1", "name": "Read"})

        assert store.get("habit", "h1") == {"id": "h1", "name": "Read"}
        assert store.delete("habit", "h1")
        assert store.get("habit", "h1") is None
        assert not store.delete("habit", "h1")

    def test_put_replaces(self, store):
        """Should replace a document written under the same id"""
        store.put("habit", "h1", {"v": 1})
        store.put("habit", "h1", {"v": 2})

        assert store.scan("habit") == [{"v": 2}]

    def test_scan_filters_by_type_and_predicate(self, store):
        """Should filter scans by entity type and predicate"""
        store.put("habit", "h1", {"user_id": "a"})
        store.put("habit", "h2", {"user_id": "b"})
        store.put("completion", "c1", {"user_id": "a"})

        assert store.scan("habit", lambda doc: doc["user_id"] == "a") == [{"user_id": "a"}]

    def test_atomic_rolls_back_on_error(self, store):
        """Should roll back every write of a failed unit of work"""
        with pytest.raises(RuntimeError):
            with store.atomic():
                store.put("habit", "h1", {"id": "h1"})
                raise RuntimeError("boom")

        assert store.get("habit", "h1") is None

    def test_atomic_commits(self, store, db_session):
        """Should commit a successful unit of work"""
        with store.atomic():
            store.put("habit", "h1", {"id": "h1"})
        db_session.rollback()

        assert store.get("habit", "h1") == {"id": "h1"}

    def test_unreadable_rows_are_skipped(self, store, db_session):
        """Should skip rows whose payload is not a JSON object"""
        db_session.add(StoredRecord(entity_type="habit", entity_id="bad", payload="{not json"))
        db_session.add(StoredRecord(entity_type="habit", entity_id="list", payload="[1, 2]"))
        db_session.commit()
        store.put("habit", "good", {"id": "good"})

        assert store.scan("habit") == [{"id": "good"}]
        assert store.get("habit", "bad") is None


class TestCompletionRepository:
    """Tests for the completion log"""

    def test_append_dedups_same_logical_date(self, store):
        """Should keep one completion per habit and logical date"""
        first, created = CompletionRepository.append(store, completion("c1"))
        second, created_again = CompletionRepository.append(store, completion("c2"))

        assert created
        assert not created_again
        assert second.id == first.id

    def test_corrupt_record_skipped_during_read(self, store):
        """Should skip a corrupt completion instead of failing the read"""
        CompletionRepository.append(store, completion("c1", logical_date=date(2024, 6, 11)))
        store.put(EntityType.COMPLETION.value, "broken", {"id": "broken", "habit_id": "h1"})

        records = CompletionRepository.get_for_habit(store, "h1")
        assert [r.id for r in records] == ["c1"]

    def test_sorted_by_logical_date(self, store):
        """Should return completions oldest first"""
        CompletionRepository.append(store, completion("c2", logical_date=date(2024, 6, 12)))
        CompletionRepository.append(store, completion("c1", logical_date=date(2024, 6, 10)))

        assert [r.id for r in CompletionRepository.get_for_habit(store, "h1")] == ["c1", "c2"]

    def test_mark_synced(self, store):
        """Should stamp synced_at on an existing completion only"""
        CompletionRepository.append(store, completion("c1"))

        assert CompletionRepository.mark_synced(store, "c1", NOW)
        assert CompletionRepository.get_by_id(store, "c1").synced_at == NOW
        assert not CompletionRepository.mark_synced(store, "missing", NOW)
