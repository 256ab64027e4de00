"""
Sync repository - Data access layer for the outbox of pending remote mutations.
"""
from datetime import datetime
from typing import Iterable, List, Optional

from habitsync.constants import EntityType, SyncStatus
from habitsync.repositories.local_store import (
    LocalStore, to_document, from_document, from_documents
)
from habitsync.schemas import SyncOperation


def _queue_order(operation: SyncOperation):
    return operation.enqueued_at, operation.sequence


def _settled_at(operation: SyncOperation, stamp: Optional[datetime]) -> datetime:
    return stamp or operation.last_attempt_at or operation.enqueued_at


class SyncOperationRepository:
    """Repository for SyncOperation data access"""

    @staticmethod
    def get_by_id(store: LocalStore, operation_id: str) -> Optional[SyncOperation]:
        """Get operation by ID"""
        return from_document(
            SyncOperation, store.get(EntityType.SYNC_OPERATION.value, operation_id)
        )

    @staticmethod
    def get_all(store: LocalStore) -> List[SyncOperation]:
        """All operations in enqueue order (oldest first)"""
        operations = from_documents(SyncOperation, store.scan(EntityType.SYNC_OPERATION.value))
        return sorted(operations, key=_queue_order)

    @staticmethod
    def get_by_status(store: LocalStore, status: SyncStatus) -> List[SyncOperation]:
        """Operations with one status, in enqueue order"""
        return SyncOperationRepository.get_by_statuses(store, [status])

    @staticmethod
    def get_by_statuses(store: LocalStore, statuses: Iterable[SyncStatus]) -> List[SyncOperation]:
        """
        Operations in any of `statuses`, in enqueue order.

        Rows are filtered on the raw document before parsing, so synced
        history does not slow down queue scans.
        """
        wanted = {status.value for status in statuses}
        operations = from_documents(
            SyncOperation,
            store.scan(
                EntityType.SYNC_OPERATION.value,
                lambda doc: doc.get("status") in wanted
            )
        )
        return sorted(operations, key=_queue_order)

    @staticmethod
    def save(store: LocalStore, operation: SyncOperation) -> SyncOperation:
        """Create or replace an operation"""
        store.put(EntityType.SYNC_OPERATION.value, operation.id, to_document(operation))
        return operation

    @staticmethod
    def delete(store: LocalStore, operation_id: str) -> bool:
        return store.delete(EntityType.SYNC_OPERATION.value, operation_id)

    @staticmethod
    def next_sequence(store: LocalStore) -> int:
        """Sequence number for the next enqueued operation"""
        documents = store.scan(EntityType.SYNC_OPERATION.value)
        highest = 0
        for doc in documents:
            value = doc.get("sequence")
            if isinstance(value, int) and value > highest:
                highest = value
        return highest + 1

    @staticmethod
    def reset_stale_syncing(store: LocalStore) -> List[SyncOperation]:
        """
        Return operations left in `syncing` by a crash to `pending`.

        Returns:
            The operations that were reset
        """
        reset = []
        for operation in SyncOperationRepository.get_by_status(store, SyncStatus.SYNCING):
            operation = operation.model_copy(update={"status": SyncStatus.PENDING})
            SyncOperationRepository.save(store, operation)
            reset.append(operation)
        return reset

    @staticmethod
    def purge(
        store: LocalStore,
        synced_before: datetime,
        abandoned_before: datetime
    ) -> int:
        """
        Delete operations synced before `synced_before` and operations
        abandoned before `abandoned_before`.

        Age is measured from when the operation settled, not when it was
        enqueued.

        Returns:
            Number of deleted operations
        """
        removed = 0
        candidates = SyncOperationRepository.get_by_statuses(
            store, [SyncStatus.SYNCED, SyncStatus.FAILED]
        )
        for operation in candidates:
            expired_synced = (
                operation.status == SyncStatus.SYNCED
                and _settled_at(operation, operation.synced_at) < synced_before
            )
            expired_abandoned = (
                operation.is_abandoned
                and _settled_at(operation, operation.abandoned_at) < abandoned_before
            )
            if expired_synced or expired_abandoned:
                SyncOperationRepository.delete(store, operation.id)
                removed += 1
        return removed
