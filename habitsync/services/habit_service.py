"""
Habit coordinator.
Turns a user action into one local unit of work: append to the completion
and XP logs, recompute the habit's snapshot wholesale and enqueue the
matching sync operations. Progress events are emitted only after the unit
of work commits.
"""
import re
import threading
import uuid
from contextlib import contextmanager
from datetime import date
from typing import Dict, Hashable, Iterator, List, Optional, Tuple

from habitsync.constants import (
    EntityType, HabitFrequency, OperationKind, ProgressEventType, XpEventType,
    HABIT_NAME_MIN_LENGTH, HABIT_NAME_MAX_LENGTH, HABIT_NAME_PATTERN,
    DEFAULT_MAX_HABITS, STREAK_MILESTONES
)
from habitsync.exceptions import (
    CompletionNotFoundException, HabitNotFoundException, ValidationException
)
from habitsync.models import Settings
from habitsync.repositories.completion_repository import CompletionRepository
from habitsync.repositories.habit_repository import HabitRepository, ProgressSnapshotRepository
from habitsync.repositories.local_store import LocalStore, to_document
from habitsync.schemas import (
    CompletionRecord, CompletionResponse, Habit, HabitCreate, HabitProgressSnapshot,
    HabitUpdate, WeatherResponse, XpAwardResponse, XpEvent, XpStatistics
)
from habitsync.services.date_service import Clock, DateService
from habitsync.services.event_service import ProgressEvent, ProgressEventBus
from habitsync.services.progress_service import ProgressService
from habitsync.services.streak_service import StreakService
from habitsync.services.sync_service import SyncQueue
from habitsync.services.xp_service import XpService


# Habit fields a client may clear by sending null
CLEARABLE_HABIT_FIELDS = {"description"}


class EntityLocks:
    """Process-wide registry of one lock per entity key"""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, threading.Lock] = {}

    def lock_for(self, key: Hashable) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, *keys: Hashable) -> Iterator[None]:
        """Acquire the locks for keys in the given order, release in reverse"""
        acquired = []
        try:
            for key in keys:
                lock = self.lock_for(key)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


entity_locks = EntityLocks()


class HabitService:
    """Coordinator for habit, completion and XP actions"""

    def __init__(
        self,
        store: LocalStore,
        clock: Clock,
        settings: Settings,
        events: Optional[ProgressEventBus] = None,
        locks: Optional[EntityLocks] = None
    ):
        self.store = store
        self.clock = clock
        self.settings = settings
        self.events = events or ProgressEventBus()
        self.locks = locks or entity_locks
        self.habit_repo = HabitRepository()
        self.completion_repo = CompletionRepository()
        self.snapshot_repo = ProgressSnapshotRepository()
        self.date_service = DateService()
        self.streak_service = StreakService()
        self.progress = ProgressService(store, clock, settings)
        self.xp = XpService(store, clock, settings)
        self.queue = SyncQueue(store, clock, settings)

    # Habits

    def get_habits(self, user_id: str, active_only: bool = False) -> List[Habit]:
        return self.habit_repo.get_for_user(self.store, user_id, active_only)

    def get_habit(self, user_id: str, habit_id: str) -> Habit:
        """
        Get one of the user's habits.

        Raises:
            HabitNotFoundException: If absent or owned by someone else
        """
        habit = self.habit_repo.get_by_id(self.store, habit_id)
        if habit is None or habit.user_id != user_id:
            raise HabitNotFoundException(habit_id)
        return habit

    def _max_habits(self) -> int:
        limit = self.settings.max_habits
        return DEFAULT_MAX_HABITS if limit is None else limit

    def _validate_name(self, user_id: str, name: str, habit_id: Optional[str] = None) -> str:
        name = name.strip()
        if len(name) < HABIT_NAME_MIN_LENGTH or len(name) > HABIT_NAME_MAX_LENGTH:
            raise ValidationException(
                "name",
                f"must be {HABIT_NAME_MIN_LENGTH}-{HABIT_NAME_MAX_LENGTH} characters"
            )
        if not re.fullmatch(HABIT_NAME_PATTERN, name):
            raise ValidationException("name", "contains unsupported characters")
        existing = self.habit_repo.find_by_name(self.store, user_id, name)
        if existing is not None and existing.id != habit_id:
            raise ValidationException("name", f"a habit named {name!r} already exists")
        return name

    @staticmethod
    def _validate_schedule(frequency: HabitFrequency, specific_days: List[int]) -> List[int]:
        if frequency == HabitFrequency.DAILY:
            return []
        days = sorted(set(specific_days))
        if not days:
            raise ValidationException("specific_days", "at least one weekday is required")
        if any(day < 1 or day > 7 for day in days):
            raise ValidationException("specific_days", "weekdays must be 1 (Monday) to 7 (Sunday)")
        return days

    def _check_habit_limit(self, user_id: str) -> None:
        active = len(self.habit_repo.get_for_user(self.store, user_id, active_only=True))
        limit = self._max_habits()
        if active >= limit:
            raise ValidationException("habits", f"limit of {limit} active habits reached")

    def create_habit(self, user_id: str, data: HabitCreate) -> Tuple[Habit, bool]:
        """
        Create a habit.

        Returns:
            Tuple of (habit, sync_backlogged)

        Raises:
            ValidationException: Bad name or schedule, duplicate name, limit reached
        """
        with self.locks.hold(("user", user_id)):
            name = self._validate_name(user_id, data.name)
            specific_days = self._validate_schedule(data.frequency, data.specific_days)
            self._check_habit_limit(user_id)

            now = self.clock.now()
            habit = Habit(
                id=str(uuid.uuid4()),
                user_id=user_id,
                name=name,
                description=data.description,
                frequency=data.frequency,
                specific_days=specific_days,
                created_at=now,
                updated_at=now
            )
            with self.store.atomic():
                self.habit_repo.save(self.store, habit)
                self.progress.recompute(habit.id)
                _, backlogged = self.queue.enqueue(
                    OperationKind.CREATE, EntityType.HABIT, habit.id, to_document(habit)
                )
        return habit, backlogged

    def update_habit(self, user_id: str, habit_id: str, data: HabitUpdate) -> Tuple[Habit, bool]:
        """
        Apply a partial update to a habit.

        Returns:
            Tuple of (habit, sync_backlogged)
        """
        with self.locks.hold(("user", user_id), ("habit", habit_id)):
            habit = self.get_habit(user_id, habit_id)
            changes = {
                key: value for key, value in data.model_dump(exclude_unset=True).items()
                if value is not None or key in CLEARABLE_HABIT_FIELDS
            }

            if "name" in changes:
                changes["name"] = self._validate_name(user_id, changes["name"], habit_id)
            frequency = changes.get("frequency", habit.frequency)
            specific_days = changes.get("specific_days", habit.specific_days)
            if "frequency" in changes or "specific_days" in changes:
                changes["specific_days"] = self._validate_schedule(frequency, specific_days)
            if changes.get("is_active") and not habit.is_active:
                self._check_habit_limit(user_id)

            changes["updated_at"] = self.clock.now()
            habit = habit.model_copy(update=changes)
            with self.store.atomic():
                self.habit_repo.save(self.store, habit)
                _, backlogged = self.queue.enqueue(
                    OperationKind.UPDATE, EntityType.HABIT, habit.id, to_document(habit)
                )
        return habit, backlogged

    def delete_habit(self, user_id: str, habit_id: str) -> bool:
        """
        Delete a habit together with its completions and snapshot.
        Earned XP stays in the ledger.

        Returns:
            sync_backlogged
        """
        with self.locks.hold(("user", user_id), ("habit", habit_id)):
            habit = self.get_habit(user_id, habit_id)
            completions = self.completion_repo.get_for_habit(self.store, habit.id)
            operations = [
                (OperationKind.DELETE, EntityType.COMPLETION, record.id, {"id": record.id})
                for record in completions
            ]
            operations.append((OperationKind.DELETE, EntityType.HABIT, habit.id, {"id": habit.id}))

            with self.store.atomic():
                for record in completions:
                    self.completion_repo.delete(self.store, record.id)
                self.snapshot_repo.delete(self.store, habit.id)
                self.habit_repo.delete(self.store, habit.id)
                backlogged = self.queue.enqueue_all(operations)
        return backlogged

    # Completions

    def complete_habit(self, user_id: str, habit_id: str, notes: Optional[str] = None) -> CompletionResponse:
        """
        Complete a habit for the current logical date.

        A second completion on the same logical date returns the stored
        record with duplicate=True; nothing is awarded or queued.

        Raises:
            HabitNotFoundException: Unknown habit
            ValidationException: Habit is inactive
            LocalStoreException: Local write failed (nothing is kept or queued)
        """
        with self.locks.hold(("user", user_id), ("habit", habit_id)):
            habit = self.get_habit(user_id, habit_id)
            if not habit.is_active:
                raise ValidationException("habit", "inactive habits cannot be completed")

            now = self.clock.now()
            logical_date = self.date_service.logical_date_for(now, self.settings)
            total_before = self.xp.total_xp(user_id)

            existing = self.completion_repo.get_by_habit_and_date(self.store, habit_id, logical_date)
            if existing is not None:
                return CompletionResponse(
                    record=existing,
                    snapshot=self.progress.get_snapshot(habit_id),
                    total_xp=total_before,
                    level=self.xp.calculate_level(total_before),
                    duplicate=True
                )

            before = self._announced_snapshot(habit_id, logical_date)
            dates = self.progress.completion_dates(habit_id) + [logical_date]
            streak = self.streak_service.current_streak(dates, logical_date)
            completed_ids = self.progress.completed_habit_ids(user_id, logical_date) | {habit_id}

            xp_events = self.xp.completion_awards(
                user_id,
                habit_id,
                logical_date,
                streak,
                self.progress.scheduled_habits(user_id, logical_date),
                completed_ids
            )
            record = CompletionRecord(
                id=str(uuid.uuid4()),
                habit_id=habit_id,
                user_id=user_id,
                occurred_at=now,
                logical_date=logical_date,
                xp_awarded=sum(event.amount for event in xp_events),
                was_bonus_day=any(e.type == XpEventType.ALL_DAILY_BONUS for e in xp_events),
                was_milestone=any(e.type in STREAK_MILESTONES.values() for e in xp_events),
                notes=notes,
                created_at=now
            )

            with self.store.atomic():
                record, _ = self.completion_repo.append(self.store, record)
                self.xp.append(xp_events)
                snapshot = self.progress.recompute(habit_id, logical_date)
                backlogged = self.queue.enqueue_all(
                    [(OperationKind.CREATE, EntityType.COMPLETION, record.id, to_document(record))]
                    + [
                        (OperationKind.CREATE, EntityType.XP_EVENT, event.id, to_document(event))
                        for event in xp_events
                    ]
                )

        total_after = total_before + record.xp_awarded
        self.events.emit_all(
            self._completion_events(user_id, habit_id, xp_events, before, snapshot)
            + self._level_events(user_id, total_before, total_after)
        )
        return CompletionResponse(
            record=record,
            xp_events=xp_events,
            xp_awarded=record.xp_awarded,
            snapshot=snapshot,
            total_xp=total_after,
            level=self.xp.calculate_level(total_after),
            sync_backlogged=backlogged
        )

    def delete_completion(self, user_id: str, completion_id: str) -> HabitProgressSnapshot:
        """
        Delete a completion (explicit user delete) and recompute its habit.
        XP already earned is not revoked.
        """
        record = self.completion_repo.get_by_id(self.store, completion_id)
        if record is None or record.user_id != user_id:
            raise CompletionNotFoundException(completion_id)

        with self.locks.hold(("user", user_id), ("habit", record.habit_id)):
            before = self._announced_snapshot(record.habit_id)
            with self.store.atomic():
                if not self.completion_repo.delete(self.store, completion_id):
                    raise CompletionNotFoundException(completion_id)
                snapshot = self.progress.recompute(record.habit_id)
                self.queue.enqueue(
                    OperationKind.DELETE, EntityType.COMPLETION, completion_id, {"id": completion_id}
                )

        self.events.emit_all(self._decay_events(user_id, record.habit_id, before, snapshot))
        return snapshot

    # Progress views

    def get_progress(self, user_id: str, habit_id: str) -> HabitProgressSnapshot:
        self.get_habit(user_id, habit_id)
        return self.progress.get_snapshot(habit_id)

    def evaluate_decay(self) -> List[ProgressEvent]:
        """
        Re-evaluate every active habit against the current logical date.

        Decay advances with the calendar, so a habit changes tier without
        any user action. The stored snapshot carries the tier subscribers
        last saw; each difference is announced and the snapshot refreshed.

        Returns:
            The decay events emitted
        """
        today = self.progress.today()
        emitted = []
        for habit in self.habit_repo.get_all_active(self.store):
            with self.locks.hold(("user", habit.user_id), ("habit", habit.id)):
                # Deleted while waiting for the lock
                if self.habit_repo.get_by_id(self.store, habit.id) is None:
                    continue
                before = self._announced_snapshot(habit.id, today)
                with self.store.atomic():
                    after = self.progress.recompute(habit.id, today)
            events = self._decay_events(habit.user_id, habit.id, before, after)
            self.events.emit_all(events)
            emitted.extend(events)
        return emitted

    def get_completions(self, user_id: str, habit_id: str) -> List[CompletionRecord]:
        self.get_habit(user_id, habit_id)
        return self.completion_repo.get_for_habit(self.store, habit_id)

    def get_weather(self, user_id: str, day: Optional[date] = None) -> WeatherResponse:
        return self.progress.get_weather(user_id, day)

    def get_xp_statistics(self, user_id: str) -> XpStatistics:
        return self.xp.get_statistics(user_id)

    # XP awards

    def award_daily_login(self, user_id: str) -> XpAwardResponse:
        """Daily login bonus; an empty award when already claimed today"""
        with self.locks.hold(("user", user_id)):
            total_before = self.xp.total_xp(user_id)
            with self.store.atomic():
                events = self.xp.award_daily_login(user_id)
                backlogged = self._enqueue_xp(events)
        return self._award_response(user_id, events, total_before, backlogged)

    def award_rewarded_ad(self, user_id: str, ad_id: str) -> XpAwardResponse:
        """
        Rewarded ad bonus.

        Raises:
            DailyLimitException: If today's cap is reached
        """
        with self.locks.hold(("user", user_id)):
            total_before = self.xp.total_xp(user_id)
            with self.store.atomic():
                events = self.xp.award_rewarded_ad(user_id, ad_id)
                backlogged = self._enqueue_xp(events)
            watched = self.xp.rewarded_ads_watched(user_id, self.xp.today())
        limit = self.xp.max_rewarded_ads()
        return self._award_response(
            user_id, events, total_before, backlogged,
            metadata={"ads_watched": watched, "ads_remaining": max(0, limit - watched)}
        )

    def award_manual_xp(self, user_id: str, amount: int, description: str) -> XpAwardResponse:
        """
        Manual award.

        Raises:
            ValidationException: If amount is outside 1..10000
        """
        with self.locks.hold(("user", user_id)):
            total_before = self.xp.total_xp(user_id)
            with self.store.atomic():
                events = self.xp.award_manual(user_id, amount, description)
                backlogged = self._enqueue_xp(events)
        return self._award_response(user_id, events, total_before, backlogged)

    def _enqueue_xp(self, events: List[XpEvent]) -> bool:
        return self.queue.enqueue_all(
            (OperationKind.CREATE, EntityType.XP_EVENT, event.id, to_document(event))
            for event in events
        )

    def _award_response(
        self,
        user_id: str,
        events: List[XpEvent],
        total_before: int,
        backlogged: bool,
        metadata: Optional[dict] = None
    ) -> XpAwardResponse:
        awarded = sum(event.amount for event in events)
        total_after = total_before + awarded
        level_events = self._level_events(user_id, total_before, total_after)
        self.events.emit_all(level_events)
        return XpAwardResponse(
            events=events,
            xp_awarded=awarded,
            total_xp=total_after,
            level=self.xp.calculate_level(total_after),
            leveled_up=bool(level_events),
            sync_backlogged=backlogged,
            metadata=metadata or {}
        )

    # Progress events

    def _announced_snapshot(self, habit_id: str, today: Optional[date] = None) -> HabitProgressSnapshot:
        """Stored snapshot, i.e. the decay tier subscribers were last told about"""
        cached = self.snapshot_repo.get(self.store, habit_id)
        if cached is not None:
            return cached
        return self.progress.compute_snapshot(habit_id, today)

    def _event(self, event_type: ProgressEventType, user_id: str, habit_id: Optional[str] = None, **data) -> ProgressEvent:
        return ProgressEvent(
            type=event_type,
            user_id=user_id,
            occurred_at=self.clock.now(),
            habit_id=habit_id,
            data=data
        )

    def _completion_events(
        self,
        user_id: str,
        habit_id: str,
        xp_events: List[XpEvent],
        before: HabitProgressSnapshot,
        after: HabitProgressSnapshot
    ) -> List[ProgressEvent]:
        events = []
        for xp_event in xp_events:
            if xp_event.type in STREAK_MILESTONES.values():
                events.append(self._event(
                    ProgressEventType.STREAK_MILESTONE, user_id, habit_id,
                    streak=after.current_streak, xp=xp_event.amount
                ))
            elif xp_event.type == XpEventType.ALL_DAILY_BONUS:
                events.append(self._event(
                    ProgressEventType.ALL_DAILY_BONUS, user_id, habit_id,
                    logical_date=xp_event.logical_date.isoformat(), xp=xp_event.amount
                ))
        return events + self._decay_events(user_id, habit_id, before, after)

    def _decay_events(
        self,
        user_id: str,
        habit_id: str,
        before: HabitProgressSnapshot,
        after: HabitProgressSnapshot
    ) -> List[ProgressEvent]:
        if before.decay_tier == after.decay_tier:
            return []
        return [self._event(
            ProgressEventType.DECAY_TIER_CHANGED, user_id, habit_id,
            previous=before.decay_tier.value, current=after.decay_tier.value
        )]

    def _level_events(self, user_id: str, total_before: int, total_after: int) -> List[ProgressEvent]:
        level_before = self.xp.calculate_level(total_before)
        level_after = self.xp.calculate_level(total_after)
        if level_after <= level_before:
            return []
        return [self._event(
            ProgressEventType.LEVEL_UP, user_id,
            previous=level_before, current=level_after, total_xp=total_after
        )]
