"""
Habit repository - Data access layer for habits and their progress snapshots.
"""
from typing import List, Optional

from habitsync.constants import EntityType
from habitsync.repositories.local_store import (
    LocalStore, to_document, from_document, from_documents
)
from habitsync.schemas import Habit, HabitProgressSnapshot


class HabitRepository:
    """Repository for Habit data access"""

    @staticmethod
    def get_by_id(store: LocalStore, habit_id: str) -> Optional[Habit]:
        """Get habit by ID"""
        return from_document(Habit, store.get(EntityType.HABIT.value, habit_id))

    @staticmethod
    def get_for_user(store: LocalStore, user_id: str, active_only: bool = False) -> List[Habit]:
        """Get a user's habits in creation order"""
        habits = from_documents(
            Habit,
            store.scan(EntityType.HABIT.value, lambda doc: doc.get("user_id") == user_id)
        )
        if active_only:
            habits = [habit for habit in habits if habit.is_active]
        return sorted(habits, key=lambda habit: habit.created_at)

    @staticmethod
    def get_all_active(store: LocalStore) -> List[Habit]:
        """Active habits of every user"""
        habits = from_documents(
            Habit,
            store.scan(EntityType.HABIT.value, lambda doc: doc.get("is_active", True))
        )
        return sorted(habits, key=lambda habit: habit.created_at)

    @staticmethod
    def find_by_name(store: LocalStore, user_id: str, name: str) -> Optional[Habit]:
        """Case-insensitive lookup of a user's habit by name"""
        wanted = name.strip().casefold()
        for habit in HabitRepository.get_for_user(store, user_id):
            if habit.name.strip().casefold() == wanted:
                return habit
        return None

    @staticmethod
    def save(store: LocalStore, habit: Habit) -> Habit:
        """Create or replace a habit"""
        store.put(EntityType.HABIT.value, habit.id, to_document(habit))
        return habit

    @staticmethod
    def delete(store: LocalStore, habit_id: str) -> bool:
        """Delete a habit"""
        return store.delete(EntityType.HABIT.value, habit_id)


class ProgressSnapshotRepository:
    """Repository for the cached HabitProgressSnapshot view"""

    @staticmethod
    def get(store: LocalStore, habit_id: str) -> Optional[HabitProgressSnapshot]:
        return from_document(
            HabitProgressSnapshot, store.get(EntityType.HABIT_PROGRESS.value, habit_id)
        )

    @staticmethod
    def replace(store: LocalStore, snapshot: HabitProgressSnapshot) -> HabitProgressSnapshot:
        """Drop the old view and store the freshly computed one"""
        store.delete(EntityType.HABIT_PROGRESS.value, snapshot.habit_id)
        store.put(EntityType.HABIT_PROGRESS.value, snapshot.habit_id, to_document(snapshot))
        return snapshot

    @staticmethod
    def delete(store: LocalStore, habit_id: str) -> bool:
        return store.delete(EntityType.HABIT_PROGRESS.value, habit_id)
