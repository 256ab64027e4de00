"""
Settings repository - Data access layer for the single-row Settings model.
"""
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from habitsync.exceptions import LocalStoreException, ValidationException
from habitsync.models import Settings
from habitsync.schemas import SettingsUpdate


class SettingsRepository:
    """Repository for Settings data access"""

    @staticmethod
    def get(db: Session) -> Settings:
        """
        Get settings (creates with defaults if not exists).

        Returns:
            Settings object
        """
        try:
            settings = db.query(Settings).first()
            if not settings:
                settings = Settings()
                db.add(settings)
                db.commit()
                db.refresh(settings)
        except SQLAlchemyError as e:
            db.rollback()
            raise LocalStoreException("settings read", str(e)) from e
        return settings

    @staticmethod
    def update(db: Session, changes: SettingsUpdate) -> Settings:
        """
        Apply a partial settings update.

        Raises:
            ValidationException: If the timezone is not a known IANA name
        """
        settings = SettingsRepository.get(db)
        update_data = changes.model_dump(exclude_unset=True, exclude_none=True)

        if "timezone" in update_data:
            try:
                ZoneInfo(update_data["timezone"])
            except (ZoneInfoNotFoundError, ValueError):
                raise ValidationException("timezone", f"unknown timezone {update_data['timezone']!r}")

        for key, value in update_data.items():
            setattr(settings, key, value)

        try:
            db.commit()
            db.refresh(settings)
        except SQLAlchemyError as e:
            db.rollback()
            raise LocalStoreException("settings update", str(e)) from e
        return settings
