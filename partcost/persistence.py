"""
Saving and loading price calculations on the part record.

A saved calculation lives in Part.price_calculation as a camelCase JSON
record. Records written by older versions (single material, flat machining
fields) are lifted to the current schema on load by
line_items.normalize_record; nothing else in the app ever sees them.
"""

import logging
from typing import List, Optional

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from . import models
from .catalog import CatalogRepository
from .config import settings
from .line_items import normalize_record, seed_from_part
from .schemas import CalculationData
from .session import CalculationSession, Step

logger = logging.getLogger(__name__)


class PartNotFound(LookupError):
    pass


class PersistenceError(Exception):
    """Reading the stored record failed (I/O, not absence)."""


class SaveResult(BaseModel):
    ok: bool
    part_id: int
    error: Optional[str] = None


class Notifier:
    """
    Receives success/failure signals from saves and loads.

    Logs each one and keeps the messages so the caller (the HTTP layer)
    can hand them back to the user.
    """

    def __init__(self):
        self.messages: List[dict] = []

    def success(self, message: str) -> None:
        logger.info(message)
        self.messages.append({"level": "success", "message": message})

    def failure(self, message: str) -> None:
        logger.warning(message)
        self.messages.append({"level": "error", "message": message})


class CalculationStore:
    """Persistence adapter for CalculationData, keyed by part id."""

    def __init__(self, db: Session, notifier: Optional[Notifier] = None):
        self.db = db
        self.notifier = notifier or Notifier()

    def _get_part(self, part_id: int) -> models.Part:
        part = self.db.query(models.Part).filter(models.Part.id == part_id).first()
        if part is None:
            raise PartNotFound(f"Part {part_id} not found")
        return part

    def load(self, part_id: int) -> Optional[CalculationData]:
        """
        The saved calculation for a part, normalized to the current schema.

        None means "nothing saved yet" and is not an error. A database
        failure is reported to the notifier and raised as PersistenceError.
        """
        try:
            part = self._get_part(part_id)
            record = part.price_calculation
        except SQLAlchemyError as e:
            self.db.rollback()
            self.notifier.failure(f"Failed to load calculation for part {part_id}: {e}")
            raise PersistenceError(str(e)) from e
        if not record:
            return None
        return normalize_record(record)

    def save(self, part_id: int, data: CalculationData) -> SaveResult:
        """
        Store `data` on the part. Never raises for storage problems: failures
        are rolled back, reported, and returned as SaveResult(ok=False).
        """
        try:
            part = self._get_part(part_id)
        except PartNotFound as e:
            self.notifier.failure(str(e))
            return SaveResult(ok=False, part_id=part_id, error=str(e))
        except SQLAlchemyError as e:
            self.db.rollback()
            self.notifier.failure(f"Failed to save calculation: {e}")
            return SaveResult(ok=False, part_id=part_id, error=str(e))

        try:
            part.price_calculation = data.to_record()
            flag_modified(part, "price_calculation")
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            self.notifier.failure(f"Failed to save calculation: {e}")
            return SaveResult(ok=False, part_id=part_id, error=str(e))

        self.notifier.success("Price calculation saved")
        return SaveResult(ok=True, part_id=part_id)

    def open_session(self, part_id: int, catalog: Optional[CatalogRepository] = None) -> CalculationSession:
        """
        Start a calculation session for a part.

        A saved calculation resumes directly on results. Otherwise the data
        is seeded from the part's declared materials and components and the
        wizard starts at step 1.
        """
        part = self._get_part(part_id)
        saved = self.load(part_id)
        if saved is not None:
            data, step = saved, Step.RESULTS
        else:
            data, step = seed_from_part(part), Step.MATERIALS
        return CalculationSession(
            part_id=part.id,
            data=data,
            step=step,
            catalog=catalog,
            currency=part.currency or settings.DEFAULT_CURRENCY,
            fallback_weight_per_piece=part.weight or 0.0,
        )

    def save_session(self, session: CalculationSession) -> SaveResult:
        """Save a session's current data, holding its persistence slot."""
        with session.persistence_slot():
            return self.save(session.part_id, session.data)
