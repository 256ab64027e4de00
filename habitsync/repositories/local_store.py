"""
Local store - durable document storage behind a small interface.
Every persisted entity (habits, completions, XP events, snapshots, sync
operations) is a JSON document keyed by (entity_type, entity_id).
"""
import json
import logging
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional, Protocol, Type, TypeVar

from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from habitsync.exceptions import LocalStoreException
from habitsync.models import StoredRecord

logger = logging.getLogger("habitsync.store")

Predicate = Callable[[dict], bool]
ModelT = TypeVar("ModelT", bound=BaseModel)


def to_document(model: BaseModel) -> dict:
    """Serialize a record to its JSON wire form"""
    return model.model_dump(mode="json")


def from_document(model_cls: Type[ModelT], data: Optional[dict]) -> Optional[ModelT]:
    """Parse a stored document, returning None (and logging) if it is corrupt"""
    if data is None:
        return None
    try:
        return model_cls.model_validate(data)
    except ValidationError as e:
        logger.warning(
            f"Skipping corrupt {model_cls.__name__} record {data.get('id', '?')}: "
            f"{e.error_count()} validation error(s)"
        )
        return None


def from_documents(model_cls: Type[ModelT], documents: List[dict]) -> List[ModelT]:
    """Parse many stored documents, skipping corrupt ones"""
    models = []
    for data in documents:
        model = from_document(model_cls, data)
        if model is not None:
            models.append(model)
    return models


class LocalStore(Protocol):
    """Durable local storage consumed by the repositories"""

    def get(self, entity_type: str, entity_id: str) -> Optional[dict]: ...

    def put(self, entity_type: str, entity_id: str, record: dict) -> None: ...

    def delete(self, entity_type: str, entity_id: str) -> bool: ...

    def scan(self, entity_type: str, predicate: Optional[Predicate] = None) -> List[dict]: ...

    def atomic(self): ...


class SqlLocalStore:
    """
    LocalStore backed by a SQLAlchemy session.

    Writes are flushed immediately but only become durable when the
    enclosing atomic() block commits; a failure inside the block rolls
    back every write made in it.
    """

    def __init__(self, db: Session):
        self.db = db

    def _row(self, entity_type: str, entity_id: str) -> Optional[StoredRecord]:
        return self.db.query(StoredRecord).filter(
            StoredRecord.entity_type == entity_type,
            StoredRecord.entity_id == entity_id
        ).first()

    @staticmethod
    def _decode(row: StoredRecord) -> Optional[dict]:
        try:
            data = json.loads(row.payload)
        except (TypeError, ValueError) as e:
            logger.warning(f"Skipping unreadable {row.entity_type} record {row.entity_id}: {e}")
            return None
        if not isinstance(data, dict):
            logger.warning(f"Skipping non-object {row.entity_type} record {row.entity_id}")
            return None
        return data

    def get(self, entity_type: str, entity_id: str) -> Optional[dict]:
        """Get a single record, or None if absent or unreadable"""
        try:
            row = self._row(entity_type, entity_id)
        except SQLAlchemyError as e:
            raise LocalStoreException("get", str(e)) from e
        if row is None:
            return None
        return self._decode(row)

    def put(self, entity_type: str, entity_id: str, record: dict) -> None:
        """Insert or replace a record"""
        try:
            payload = json.dumps(record)
        except (TypeError, ValueError) as e:
            raise LocalStoreException("put", f"record is not serializable: {e}") from e
        try:
            row = self._row(entity_type, entity_id)
            if row is None:
                row = StoredRecord(entity_type=entity_type, entity_id=entity_id, payload=payload)
                self.db.add(row)
            else:
                row.payload = payload
            self.db.flush()
        except SQLAlchemyError as e:
            raise LocalStoreException("put", str(e)) from e

    def delete(self, entity_type: str, entity_id: str) -> bool:
        """Delete a record. Returns False if it did not exist."""
        try:
            row = self._row(entity_type, entity_id)
            if row is None:
                return False
            self.db.delete(row)
            self.db.flush()
            return True
        except SQLAlchemyError as e:
            raise LocalStoreException("delete", str(e)) from e

    def scan(self, entity_type: str, predicate: Optional[Predicate] = None) -> List[dict]:
        """All readable records of a type, in insertion order, optionally filtered"""
        try:
            rows = self.db.query(StoredRecord).filter(
                StoredRecord.entity_type == entity_type
            ).order_by(StoredRecord.id).all()
        except SQLAlchemyError as e:
            raise LocalStoreException("scan", str(e)) from e

        records = []
        for row in rows:
            data = self._decode(row)
            if data is None:
                continue
            if predicate is None or predicate(data):
                records.append(data)
        return records

    @contextmanager
    def atomic(self) -> Iterator["SqlLocalStore"]:
        """Unit of work: commit on success, roll back everything on failure"""
        try:
            yield self
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise LocalStoreException("commit", str(e)) from e
        except Exception:
            self.db.rollback()
            raise
