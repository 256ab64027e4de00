"""
XP repository - the append-only XP event log.
"""
from datetime import date
from typing import List, Optional

from habitsync.constants import EntityType, XpEventType
from habitsync.repositories.local_store import LocalStore, to_document, from_documents
from habitsync.schemas import XpEvent


class XpEventRepository:
    """Repository for XpEvent data access"""

    @staticmethod
    def append(store: LocalStore, event: XpEvent) -> XpEvent:
        """Append an XP event"""
        store.put(EntityType.XP_EVENT.value, event.id, to_document(event))
        return event

    @staticmethod
    def get_for_user(store: LocalStore, user_id: str) -> List[XpEvent]:
        """All readable XP events of a user, oldest first"""
        events = from_documents(
            XpEvent,
            store.scan(EntityType.XP_EVENT.value, lambda doc: doc.get("user_id") == user_id)
        )
        return sorted(events, key=lambda event: event.earned_at)

    @staticmethod
    def get_for_user_on(
        store: LocalStore,
        user_id: str,
        logical_date: date,
        event_type: Optional[XpEventType] = None
    ) -> List[XpEvent]:
        """A user's XP events on one logical date, optionally of one type"""
        wanted = logical_date.isoformat()

        def matches(doc: dict) -> bool:
            if doc.get("user_id") != user_id or doc.get("logical_date") != wanted:
                return False
            return event_type is None or doc.get("type") == event_type.value

        return from_documents(XpEvent, store.scan(EntityType.XP_EVENT.value, matches))

    @staticmethod
    def total_for_user(store: LocalStore, user_id: str) -> int:
        return sum(event.amount for event in XpEventRepository.get_for_user(store, user_id))
