"""
Persistence adapter for inspections.

Reads the recent history, writes new records tagged with the signed-in user
and lists rows inserted after a given row id for the push feed.
"""
from typing import Callable, List, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from defectvision.config import settings
from defectvision.database import SessionLocal
from defectvision.logger import logger
from defectvision.models.inspection import DBInspection, Inspection


class StoreError(RuntimeError):
    """Raised when the store cannot complete a read or write."""


class AuthenticationRequiredError(StoreError):
    """Raised when a write is attempted without a signed-in user."""


def _map_row(row: DBInspection) -> Optional[Inspection]:
    """Convert one stored row; rows that cannot be read are logged and skipped."""
    try:
        return row.to_inspection()
    except (ValidationError, TypeError) as e:
        logger.warning(f"Skipping unreadable stored inspection row {row.id}: {e}")
        return None


class InspectionStore:
    def __init__(self, session_factory: Callable[[], Session] = SessionLocal, history_limit: Optional[int] = None):
        self._session_factory = session_factory
        self._history_limit = history_limit or settings.history_limit

    def load_recent(self) -> Tuple[List[Inspection], int]:
        """
        Load the newest records to seed a session.

        Returns:
            (records newest first, highest row id in the table)
        """
        db = self._session_factory()
        try:
            rows = db.query(DBInspection).order_by(
                DBInspection.created_at.desc(), DBInspection.id.desc()
            ).limit(self._history_limit).all()
            watermark = db.query(func.max(DBInspection.id)).scalar() or 0
            records = [r for r in map(_map_row, rows) if r is not None]
        except SQLAlchemyError as e:
            raise StoreError(f"Error loading inspections: {e}") from e
        finally:
            db.close()
        logger.info(f"Loaded {len(records)} stored inspection(s)")
        return records, watermark

    def save(self, inspection: Inspection, user_id: Optional[str]) -> None:
        """
        Write one inspection.

        Args:
            inspection: the record to persist
            user_id: the signed-in user; the write is refused without one
        """
        if not user_id:
            raise AuthenticationRequiredError("Please sign in to save inspections.")
        db = self._session_factory()
        try:
            db.add(DBInspection.from_inspection(inspection, user_id))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreError(f"Could not save inspection {inspection.id} ({e.__class__.__name__})") from e
        finally:
            db.close()

    def fetch_after(self, row_id: int) -> Tuple[List[Inspection], int]:
        """
        Rows inserted after ``row_id``, oldest first.

        Returns:
            (readable records, highest row id seen including skipped rows)
        """
        db = self._session_factory()
        try:
            rows = db.query(DBInspection).filter(DBInspection.id > row_id).order_by(DBInspection.id).all()
            last_id = rows[-1].id if rows else row_id
            return [r for r in map(_map_row, rows) if r is not None], last_id
        except SQLAlchemyError as e:
            raise StoreError(f"Error reading new inspections: {e}") from e
        finally:
            db.close()
