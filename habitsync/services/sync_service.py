"""
Sync service - the outbox of local mutations waiting to reach the remote store.

Every local write enqueues a SyncOperation in the same unit of work. A single
SyncWorker drains the queue oldest first, one operation at a time, with
bounded per-call timeouts, exponential backoff between retries and
abandonment once the retry budget is spent.
"""
import logging
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Tuple

from habitsync.constants import (
    EntityType, OperationKind, SyncStatus,
    DEFAULT_SYNC_MAX_RETRIES, DEFAULT_SYNC_QUEUE_CAPACITY, DEFAULT_SYNC_TIMEOUT_SECONDS,
    DEFAULT_SYNC_RETRY_DELAY_SECONDS, DEFAULT_SYNC_MAX_BACKOFF_SECONDS,
    DEFAULT_SYNCED_RETENTION_DAYS, DEFAULT_FAILED_RETENTION_DAYS
)
from habitsync.exceptions import (
    OperationNotFoundException, RemoteTerminalError, RemoteTransientError
)
from habitsync.models import Settings
from habitsync.repositories.completion_repository import CompletionRepository
from habitsync.repositories.local_store import LocalStore
from habitsync.repositories.sync_repository import SyncOperationRepository
from habitsync.schemas import SyncOperation, SyncStatusResponse
from habitsync.services.date_service import Clock

logger = logging.getLogger("habitsync.sync")


class RemoteStore(Protocol):
    """
    Remote persistence. Implementations raise RemoteTransientError for
    network/timeout failures and RemoteTerminalError for rejections.
    """

    def create(self, entity_type: str, payload: Dict[str, Any]) -> None: ...

    def update(self, entity_type: str, payload: Dict[str, Any]) -> None: ...

    def delete(self, entity_type: str, payload: Dict[str, Any]) -> None: ...


class UnconfiguredRemoteStore:
    """Placeholder until a transport is injected; every call is retryable"""

    def _fail(self, entity_type: str, payload: Dict[str, Any]) -> None:
        raise RemoteTransientError("remote store not configured")

    create = update = delete = _fail


class ErrorReporter(Protocol):
    """Receives operations that will never be retried automatically"""

    def report(self, operation: SyncOperation, error: str) -> None: ...


class LoggingErrorReporter:
    """Default ErrorReporter: writes abandoned operations to the error log"""

    def report(self, operation: SyncOperation, error: str) -> None:
        logger.error(
            f"Abandoned {operation.kind.value} {operation.entity_type}/{operation.entity_id} "
            f"after {operation.retry_count} attempt(s): {error}"
        )


def _setting(settings: Settings, name: str, default: int) -> int:
    value = getattr(settings, name, None)
    return default if value is None else value


class SyncQueue:
    """Durable outbox over the LocalStore"""

    def __init__(self, store: LocalStore, clock: Clock, settings: Settings):
        self.store = store
        self.clock = clock
        self.settings = settings
        self.sync_repo = SyncOperationRepository()
        self.completion_repo = CompletionRepository()

    @property
    def max_retries(self) -> int:
        return _setting(self.settings, "sync_max_retries", DEFAULT_SYNC_MAX_RETRIES)

    @property
    def capacity(self) -> int:
        return _setting(self.settings, "sync_queue_capacity", DEFAULT_SYNC_QUEUE_CAPACITY)

    @property
    def timeout_seconds(self) -> int:
        return _setting(self.settings, "sync_timeout_seconds", DEFAULT_SYNC_TIMEOUT_SECONDS)

    # Enqueue (called inside the coordinator's unit of work)

    def enqueue(
        self,
        kind: OperationKind,
        entity_type: EntityType,
        entity_id: str,
        payload: Optional[Dict[str, Any]] = None
    ) -> Tuple[SyncOperation, bool]:
        """
        Append an operation to the outbox.

        Never rejects: when the queue is over capacity the operation is still
        stored and the caller is told sync is backlogged.

        Returns:
            Tuple of (operation, backlogged)
        """
        backlogged = self.outstanding_count() >= self.capacity
        operation = SyncOperation(
            id=str(uuid.uuid4()),
            kind=kind,
            entity_type=entity_type.value,
            entity_id=entity_id,
            payload=payload or {},
            enqueued_at=self.clock.now(),
            sequence=self.sync_repo.next_sequence(self.store)
        )
        self.sync_repo.save(self.store, operation)
        if backlogged:
            logger.warning(
                f"Sync queue backlogged ({self.capacity} outstanding); "
                f"queued {kind.value} {entity_type.value}/{entity_id} anyway"
            )
        return operation, backlogged

    def enqueue_all(
        self,
        operations: Iterable[Tuple[OperationKind, EntityType, str, Dict[str, Any]]]
    ) -> bool:
        """Enqueue several operations in order. Returns True if any was backlogged."""
        backlogged = False
        for kind, entity_type, entity_id, payload in operations:
            _, flag = self.enqueue(kind, entity_type, entity_id, payload)
            backlogged = backlogged or flag
        return backlogged

    # Queue state

    def get_operation(self, operation_id: str) -> SyncOperation:
        operation = self.sync_repo.get_by_id(self.store, operation_id)
        if operation is None:
            raise OperationNotFoundException(operation_id)
        return operation

    def list_operations(self, status: Optional[SyncStatus] = None) -> List[SyncOperation]:
        """Operations in drain order, optionally of one status"""
        if status is None:
            return self.sync_repo.get_all(self.store)
        return self.sync_repo.get_by_status(self.store, status)

    def is_retryable(self, operation: SyncOperation) -> bool:
        return (
            operation.status == SyncStatus.FAILED
            and not operation.is_abandoned
            and operation.retry_count < self.max_retries
        )

    def backoff_delay(self, retry_count: int) -> timedelta:
        """base * 2^(retry_count - 1), capped"""
        base = _setting(self.settings, "sync_retry_delay_seconds", DEFAULT_SYNC_RETRY_DELAY_SECONDS)
        cap = _setting(self.settings, "sync_max_backoff_seconds", DEFAULT_SYNC_MAX_BACKOFF_SECONDS)
        if retry_count <= 0:
            return timedelta(0)
        return timedelta(seconds=min(cap, base * 2 ** (retry_count - 1)))

    def is_due(self, operation: SyncOperation, now: datetime) -> bool:
        """Whether an operation may be attempted now"""
        if operation.status == SyncStatus.PENDING:
            return True
        if not self.is_retryable(operation):
            return False
        if operation.last_attempt_at is None:
            return True
        return now >= operation.last_attempt_at + self.backoff_delay(operation.retry_count)

    def next_due(self, exclude: Optional[set] = None) -> Optional[SyncOperation]:
        """Oldest operation that may be attempted now, skipping `exclude` ids"""
        exclude = exclude or set()
        now = self.clock.now()
        candidates = self.sync_repo.get_by_statuses(
            self.store, [SyncStatus.PENDING, SyncStatus.FAILED]
        )
        for operation in candidates:
            if operation.id in exclude:
                continue
            if self.is_due(operation, now):
                return operation
        return None

    def outstanding_count(self) -> int:
        """Operations that still need to reach the remote store"""
        candidates = self.sync_repo.get_by_statuses(
            self.store, [SyncStatus.PENDING, SyncStatus.SYNCING, SyncStatus.FAILED]
        )
        return sum(
            1 for operation in candidates
            if operation.status != SyncStatus.FAILED or self.is_retryable(operation)
        )

    def status(self) -> SyncStatusResponse:
        operations = self.sync_repo.get_all(self.store)
        pending = sum(1 for op in operations if op.status in (SyncStatus.PENDING, SyncStatus.SYNCING))
        retryable = sum(1 for op in operations if self.is_retryable(op))
        abandoned = sum(1 for op in operations if op.is_abandoned)
        synced = sum(1 for op in operations if op.status == SyncStatus.SYNCED)
        return SyncStatusResponse(
            pending=pending,
            retryable=retryable,
            abandoned=abandoned,
            synced=synced,
            capacity=self.capacity,
            backlogged=pending + retryable >= self.capacity
        )

    # Transitions (committed one at a time by the worker)

    def mark_syncing(self, operation: SyncOperation) -> SyncOperation:
        operation = operation.model_copy(update={
            "status": SyncStatus.SYNCING,
            "last_attempt_at": self.clock.now()
        })
        with self.store.atomic():
            self.sync_repo.save(self.store, operation)
        return operation

    def mark_synced(self, operation: SyncOperation) -> SyncOperation:
        now = self.clock.now()
        operation = operation.model_copy(update={
            "status": SyncStatus.SYNCED,
            "last_error": None,
            "abandoned_at": None,
            "synced_at": now
        })
        with self.store.atomic():
            self.sync_repo.save(self.store, operation)
            if (
                operation.kind == OperationKind.CREATE
                and operation.entity_type == EntityType.COMPLETION.value
            ):
                self.completion_repo.mark_synced(self.store, operation.entity_id, now)
        return operation

    def mark_failed(self, operation: SyncOperation, error: str, terminal: bool = False) -> SyncOperation:
        """
        Record a failed attempt.

        Transient failures consume one retry and the operation is abandoned
        once retry_count reaches max_retries; terminal failures are
        abandoned immediately.
        """
        retry_count = operation.retry_count + 1
        abandon = terminal or retry_count >= self.max_retries
        operation = operation.model_copy(update={
            "status": SyncStatus.FAILED,
            "retry_count": retry_count,
            "last_error": error,
            "abandoned_at": self.clock.now() if abandon else None
        })
        with self.store.atomic():
            self.sync_repo.save(self.store, operation)
        return operation

    # Maintenance

    def recover_stale(self) -> int:
        """Reset operations left `syncing` by a crash. Run once at startup."""
        with self.store.atomic():
            reset = self.sync_repo.reset_stale_syncing(self.store)
        if reset:
            logger.warning(f"Reset {len(reset)} stale syncing operation(s) to pending")
        return len(reset)

    def purge(self) -> int:
        """Delete synced and abandoned operations past their retention windows"""
        now = self.clock.now()
        synced_days = _setting(self.settings, "synced_retention_days", DEFAULT_SYNCED_RETENTION_DAYS)
        failed_days = _setting(self.settings, "failed_retention_days", DEFAULT_FAILED_RETENTION_DAYS)
        with self.store.atomic():
            removed = self.sync_repo.purge(
                self.store,
                synced_before=now - timedelta(days=synced_days),
                abandoned_before=now - timedelta(days=failed_days)
            )
        if removed:
            logger.info(f"Purged {removed} expired sync operation(s)")
        return removed


@dataclass
class DrainResult:
    attempted: int = 0
    synced: int = 0
    failed: int = 0
    abandoned: int = 0
    coalesced: bool = False

    def merge(self, other: "DrainResult") -> None:
        self.attempted += other.attempted
        self.synced += other.synced
        self.failed += other.failed
        self.abandoned += other.abandoned


QueueFactory = Callable[[], AbstractContextManager]


class SyncWorker:
    """
    Single background drainer for the outbox.

    Drain requests from any thread coalesce: while a drain runs, further
    requests only mark that another pass is needed, so at most one drain
    is ever in progress. stop() takes effect between operations.

    Remote calls run on one dedicated thread. A call that outlives its
    timeout is recorded as a failed attempt but keeps the thread: no other
    operation is sent until it returns. If it then turns out to have
    succeeded, the operation is marked synced instead of being retried.
    """

    def __init__(
        self,
        remote: RemoteStore,
        queue_factory: QueueFactory,
        error_reporter: Optional[ErrorReporter] = None
    ):
        self.remote = remote
        self.queue_factory = queue_factory
        self.error_reporter = error_reporter or LoggingErrorReporter()
        self._state_lock = threading.Lock()
        self._draining = False
        self._rerun = False
        self._stopped = threading.Event()
        self._remote_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="habitsync-remote")
        self._hung: Optional[Tuple[str, Future]] = None

    @property
    def is_draining(self) -> bool:
        with self._state_lock:
            return self._draining

    @property
    def is_stopped(self) -> bool:
        return self._stopped.is_set()

    @property
    def is_remote_busy(self) -> bool:
        """Whether a timed-out remote call is still running"""
        hung = self._hung
        return hung is not None and not hung[1].done()

    def start(self) -> int:
        """Allow drains again and recover operations stuck in `syncing`"""
        self._stopped.clear()
        with self.queue_factory() as queue:
            return queue.recover_stale()

    def stop(self) -> None:
        """Stop draining after the in-flight operation finishes"""
        self._stopped.set()

    def request_drain(self) -> DrainResult:
        """
        Drain the queue, or coalesce into the drain already running.

        Returns:
            Totals of the drain (coalesced=True if another drain picked it up)
        """
        with self._state_lock:
            if self._draining:
                self._rerun = True
                return DrainResult(coalesced=True)
            self._draining = True
            self._rerun = False

        total = DrainResult()
        try:
            while True:
                total.merge(self._drain_once())
                with self._state_lock:
                    if not self._rerun or self._stopped.is_set():
                        self._draining = False
                        self._rerun = False
                        return total
                    self._rerun = False
        except Exception:
            with self._state_lock:
                self._draining = False
            raise

    def purge(self) -> int:
        with self.queue_factory() as queue:
            return queue.purge()

    def _drain_once(self) -> DrainResult:
        result = DrainResult()
        if self._stopped.is_set():
            return result

        with self.queue_factory() as queue:
            if not self._settle_hung_call(queue, result):
                return result
            attempted = set()
            while not self._stopped.is_set():
                operation = queue.next_due(exclude=attempted)
                if operation is None:
                    break
                attempted.add(operation.id)
                self._process(queue, operation, result)
                if self._hung is not None:
                    break
        return result

    def _settle_hung_call(self, queue: SyncQueue, result: DrainResult) -> bool:
        """
        Resolve the call left running by an earlier timeout.

        Returns:
            False while that call is still running (nothing may be sent)
        """
        if self._hung is None:
            return True
        operation_id, future = self._hung
        if not future.done():
            logger.warning(f"Remote call for operation {operation_id} still running, skipping drain")
            return False
        self._hung = None
        if future.exception() is not None:
            return True

        operation = queue.sync_repo.get_by_id(queue.store, operation_id)
        if operation is not None and operation.status == SyncStatus.FAILED:
            logger.info(
                f"Timed-out {operation.kind.value} {operation.entity_type}/{operation.entity_id} "
                f"completed late; marking synced"
            )
            queue.mark_synced(operation)
            result.synced += 1
        return True

    def _process(self, queue: SyncQueue, operation: SyncOperation, result: DrainResult) -> None:
        result.attempted += 1
        operation = queue.mark_syncing(operation)
        timeout = queue.timeout_seconds

        try:
            self._call_with_timeout(operation, timeout)
        except RemoteTerminalError as e:
            operation = queue.mark_failed(operation, str(e), terminal=True)
        except RemoteTransientError as e:
            operation = queue.mark_failed(operation, str(e))
        except FutureTimeoutError:
            operation = queue.mark_failed(operation, f"Timed out after {timeout}s")
        except Exception as e:
            logger.warning(
                f"Unexpected error syncing {operation.entity_type}/{operation.entity_id}",
                exc_info=True
            )
            operation = queue.mark_failed(operation, f"{type(e).__name__}: {e}")
        else:
            queue.mark_synced(operation)
            result.synced += 1
            return

        result.failed += 1
        logger.warning(
            f"Sync {operation.kind.value} {operation.entity_type}/{operation.entity_id} failed "
            f"(attempt {operation.retry_count}): {operation.last_error}"
        )
        if operation.is_abandoned:
            result.abandoned += 1
            self.error_reporter.report(operation, operation.last_error or "")

    def _call_with_timeout(self, operation: SyncOperation, timeout: int) -> None:
        future = self._remote_executor.submit(self._dispatch, operation)
        try:
            future.result(timeout=timeout)
        except FutureTimeoutError:
            if not future.done():
                self._hung = (operation.id, future)
            raise

    def _dispatch(self, operation: SyncOperation) -> None:
        payload = dict(operation.payload)
        payload.setdefault("id", operation.entity_id)
        if operation.kind == OperationKind.CREATE:
            self.remote.create(operation.entity_type, payload)
        elif operation.kind == OperationKind.UPDATE:
            self.remote.update(operation.entity_type, payload)
        else:
            self.remote.delete(operation.entity_type, payload)
