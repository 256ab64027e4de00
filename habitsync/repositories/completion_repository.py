"""
Completion repository - the append-only completion log.
At most one record exists per (habit, logical date); a second append for
the same day returns the record already stored.
"""
from datetime import date, datetime
from typing import List, Optional, Tuple

from habitsync.constants import EntityType
from habitsync.repositories.local_store import (
    LocalStore, to_document, from_document, from_documents
)
from habitsync.schemas import CompletionRecord


class CompletionRepository:
    """Repository for CompletionRecord data access"""

    @staticmethod
    def get_by_id(store: LocalStore, completion_id: str) -> Optional[CompletionRecord]:
        """Get completion by ID"""
        return from_document(
            CompletionRecord, store.get(EntityType.COMPLETION.value, completion_id)
        )

    @staticmethod
    def get_for_habit(store: LocalStore, habit_id: str) -> List[CompletionRecord]:
        """All readable completions of a habit, oldest logical date first"""
        records = from_documents(
            CompletionRecord,
            store.scan(EntityType.COMPLETION.value, lambda doc: doc.get("habit_id") == habit_id)
        )
        return sorted(records, key=lambda record: (record.logical_date, record.occurred_at))

    @staticmethod
    def get_by_habit_and_date(
        store: LocalStore,
        habit_id: str,
        logical_date: date
    ) -> Optional[CompletionRecord]:
        """Get the completion of a habit on a logical date"""
        for record in CompletionRepository.get_for_habit(store, habit_id):
            if record.logical_date == logical_date:
                return record
        return None

    @staticmethod
    def get_for_user_on(store: LocalStore, user_id: str, logical_date: date) -> List[CompletionRecord]:
        """A user's completions on one logical date"""
        wanted = logical_date.isoformat()
        return from_documents(
            CompletionRecord,
            store.scan(
                EntityType.COMPLETION.value,
                lambda doc: doc.get("user_id") == user_id and doc.get("logical_date") == wanted
            )
        )

    @staticmethod
    def append(store: LocalStore, record: CompletionRecord) -> Tuple[CompletionRecord, bool]:
        """
        Append a completion unless the habit already has one for that logical date.

        Returns:
            Tuple of (stored record, created)
        """
        existing = CompletionRepository.get_by_habit_and_date(
            store, record.habit_id, record.logical_date
        )
        if existing is not None:
            return existing, False
        store.put(EntityType.COMPLETION.value, record.id, to_document(record))
        return record, True

    @staticmethod
    def mark_synced(store: LocalStore, completion_id: str, synced_at: datetime) -> bool:
        """Stamp synced_at, the only field that changes after creation"""
        record = CompletionRepository.get_by_id(store, completion_id)
        if record is None:
            return False
        updated = record.model_copy(update={"synced_at": synced_at})
        store.put(EntityType.COMPLETION.value, completion_id, to_document(updated))
        return True

    @staticmethod
    def delete(store: LocalStore, completion_id: str) -> bool:
        """Hard-delete a completion (explicit user delete only)"""
        return store.delete(EntityType.COMPLETION.value, completion_id)
