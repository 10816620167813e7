"""
Price Calculator API: drives a CalculationSession for one part.

POST   /api/calculator/parts/{part_id}/open    Open a session (resumes on results if saved)
GET    /api/calculator/{id}                    Current step, data and (on results) totals
POST   /api/calculator/{id}/next|back|edit     Navigate the wizard
GET    /api/calculator/{id}/totals             Totals for the current data
POST   /api/calculator/{id}/materials          Add a row or apply a catalog pick
PATCH  /api/calculator/{id}/materials/{i}      Update fields on a row
DELETE /api/calculator/{id}/materials/{i}      Remove a row
       (same three for /components and /secondary-operations)
PATCH  /api/calculator/{id}/operations/{kind}  Machining time and rate
PATCH  /api/calculator/{id}/run                Quantity and transport cost
GET    /api/calculator/{id}/search/materials   Catalog search for the material picker
GET    /api/calculator/{id}/search/components  Catalog search for the component picker
POST   /api/calculator/{id}/save               Persist the calculation on the part
DELETE /api/calculator/{id}                    Close the session, discarding unsaved data
"""

import logging
import threading
import time
import uuid
from collections import OrderedDict
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..catalog import SqlCatalogRepository
from ..config import settings
from ..database import get_db
from ..persistence import CalculationStore, Notifier, PartNotFound, PersistenceError
from ..schemas import MachiningKind
from ..session import CalculationSession, InvalidTransition, PersistenceBusy, SessionLocked, Step

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/calculator", tags=["calculator"])


class SessionRegistry:
    """
    Open sessions by id. In memory only: closing or restarting drops unsaved work.

    A session idle for longer than `idle_seconds` is dropped, and once
    `max_sessions` are open the least recently used one makes room for a
    new one. Both count as closing without saving.
    """

    def __init__(self, idle_seconds: Optional[float] = None, max_sessions: Optional[int] = None,
                 clock=time.monotonic):
        if idle_seconds is None:
            idle_seconds = settings.CALCULATOR_SESSION_IDLE_MINUTES * 60
        if max_sessions is None:
            max_sessions = settings.CALCULATOR_MAX_SESSIONS
        self.idle_seconds = idle_seconds
        self.max_sessions = max_sessions
        self._clock = clock
        # session_id -> (session, last_used), least recently used first
        self._sessions = OrderedDict()
        self._lock = threading.Lock()

    def add(self, session: CalculationSession) -> str:
        session_id = str(uuid.uuid4())
        with self._lock:
            self._expire()
            while self._sessions and len(self._sessions) >= self.max_sessions:
                evicted, _ = self._sessions.popitem(last=False)
                logger.info("Evicted calculation session %s (too many open)", evicted)
            self._sessions[session_id] = (session, self._clock())
        return session_id

    def get(self, session_id: str) -> Optional[CalculationSession]:
        with self._lock:
            self._expire()
            entry = self._sessions.get(session_id)
            if entry is None:
                return None
            self._sessions[session_id] = (entry[0], self._clock())
            self._sessions.move_to_end(session_id)
            return entry[0]

    def close(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()

    def __len__(self) -> int:
        with self._lock:
            self._expire()
            return len(self._sessions)

    def _expire(self) -> None:
        cutoff = self._clock() - self.idle_seconds
        while self._sessions:
            session_id, (_, last_used) = next(iter(self._sessions.items()))
            if last_used > cutoff:
                break
            del self._sessions[session_id]
            logger.info("Expired idle calculation session %s", session_id)


registry = SessionRegistry()


# --- Request schemas ---

class PickRequest(BaseModel):
    inventory_id: Optional[int] = None


class SecondaryOperationRequest(BaseModel):
    name: Optional[str] = None
    price_per_piece: Optional[float] = 0.0


class RunRequest(BaseModel):
    quantity: Optional[Any] = None
    transport_cost: Optional[Any] = None


# --- Helpers ---

def _get_session(session_id: str) -> CalculationSession:
    session = registry.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Calculation session not found")
    return session


def _serialize(session_id: str, session: CalculationSession) -> dict:
    response = {
        "session_id": session_id,
        "part_id": session.part_id,
        "step": session.step.value,
        "editable": session.is_editable,
        "currency": session.currency,
        "data": session.data.to_record(),
    }
    if session.step == Step.RESULTS:
        response["totals"] = session.totals().model_dump(by_alias=True)
    return response


def _apply(session_id: str, action):
    """Run a session mutation, mapping domain errors onto HTTP status codes."""
    session = _get_session(session_id)
    try:
        action(session)
    except SessionLocked as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidTransition as e:
        raise HTTPException(status_code=400, detail=str(e))
    except IndexError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _serialize(session_id, session)


# --- Endpoints ---

@router.post("/parts/{part_id}/open")
def open_session(part_id: int, db: Session = Depends(get_db)):
    """
    Open a calculation for a part.

    If the part has a saved calculation, the session starts on results.
    Otherwise it starts at step 1 with rows seeded from the part's
    declared materials and components.
    """
    store = CalculationStore(db)
    try:
        session = store.open_session(part_id)
    except PartNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PersistenceError:
        raise HTTPException(status_code=503, detail="Could not load the saved calculation")

    session_id = registry.add(session)
    logger.info("Opened calculation session %s for part %s at step %s",
                session_id, part_id, session.step.value)
    return _serialize(session_id, session)


@router.get("/{session_id}")
def get_session(session_id: str):
    return _serialize(session_id, _get_session(session_id))


@router.post("/{session_id}/next")
def next_step(session_id: str):
    return _apply(session_id, lambda s: s.next())


@router.post("/{session_id}/back")
def previous_step(session_id: str):
    return _apply(session_id, lambda s: s.back())


@router.post("/{session_id}/edit")
def edit_results(session_id: str):
    return _apply(session_id, lambda s: s.edit())


@router.get("/{session_id}/totals")
def get_totals(session_id: str):
    session = _get_session(session_id)
    return {
        "session_id": session_id,
        "currency": session.currency,
        "totals": session.totals().model_dump(by_alias=True),
    }


# --- Materials ---

@router.post("/{session_id}/materials")
def add_material(session_id: str, request: Optional[PickRequest] = None, db: Session = Depends(get_db)):
    pick = None
    if request is not None and request.inventory_id is not None:
        pick = SqlCatalogRepository(db).get_material(request.inventory_id)
        if pick is None:
            raise HTTPException(status_code=404, detail="Material not found in inventory")
    return _apply(session_id, lambda s: s.add_material(pick))


@router.patch("/{session_id}/materials/{index}")
def update_material(session_id: str, index: int, changes: dict):
    return _apply(session_id, lambda s: s.update_material(index, **changes))


@router.delete("/{session_id}/materials/{index}")
def remove_material(session_id: str, index: int):
    return _apply(session_id, lambda s: s.remove_material(index))


# --- Components ---

@router.post("/{session_id}/components")
def add_component(session_id: str, request: Optional[PickRequest] = None, db: Session = Depends(get_db)):
    pick = None
    if request is not None and request.inventory_id is not None:
        pick = SqlCatalogRepository(db).get_component(request.inventory_id)
        if pick is None:
            raise HTTPException(status_code=404, detail="Component not found in inventory")
    return _apply(session_id, lambda s: s.add_component(pick))


@router.patch("/{session_id}/components/{index}")
def update_component(session_id: str, index: int, changes: dict):
    return _apply(session_id, lambda s: s.update_component(index, **changes))


@router.delete("/{session_id}/components/{index}")
def remove_component(session_id: str, index: int):
    return _apply(session_id, lambda s: s.remove_component(index))


# --- Machining ---

@router.patch("/{session_id}/operations/{kind}")
def update_operation(session_id: str, kind: MachiningKind, changes: dict):
    return _apply(session_id, lambda s: s.update_operation(kind, **changes))


# --- Secondary operations ---

@router.post("/{session_id}/secondary-operations")
def add_secondary_operation(session_id: str, request: SecondaryOperationRequest):
    return _apply(
        session_id,
        lambda s: s.add_secondary_operation(request.name, request.price_per_piece or 0.0),
    )


@router.patch("/{session_id}/secondary-operations/{index}")
def update_secondary_operation(session_id: str, index: int, changes: dict):
    return _apply(session_id, lambda s: s.update_secondary_operation(index, **changes))


@router.delete("/{session_id}/secondary-operations/{index}")
def remove_secondary_operation(session_id: str, index: int):
    return _apply(session_id, lambda s: s.remove_secondary_operation(index))


# --- Quantity & transport ---

@router.patch("/{session_id}/run")
def update_run(session_id: str, request: RunRequest):
    return _apply(
        session_id,
        lambda s: s.set_run(quantity=request.quantity, transport_cost=request.transport_cost),
    )


# --- Catalog pickers ---

@router.get("/{session_id}/search/materials")
def search_materials(session_id: str, q: str = "", db: Session = Depends(get_db)):
    session = _get_session(session_id)
    items = session.search_materials(q, SqlCatalogRepository(db))
    return {"query": session.material_search, "items": [i.model_dump(by_alias=True) for i in items]}


@router.get("/{session_id}/search/components")
def search_components(session_id: str, q: str = "", db: Session = Depends(get_db)):
    session = _get_session(session_id)
    items = session.search_components(q, SqlCatalogRepository(db))
    return {"query": session.component_search, "items": [i.model_dump(by_alias=True) for i in items]}


# --- Persistence ---

@router.post("/{session_id}/save")
def save_calculation(session_id: str, db: Session = Depends(get_db)):
    """
    Store the current data on the part. One save per session at a time;
    a failed save leaves the session's data as it was.
    """
    session = _get_session(session_id)
    notifier = Notifier()
    store = CalculationStore(db, notifier)
    try:
        result = store.save_session(session)
    except PersistenceBusy as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {
        "session_id": session_id,
        "ok": result.ok,
        "error": result.error,
        "notifications": notifier.messages,
    }


@router.delete("/{session_id}")
def close_session(session_id: str):
    """Close without saving. Anything not saved is gone."""
    if not registry.close(session_id):
        raise HTTPException(status_code=404, detail="Calculation session not found")
    logger.info("Closed calculation session %s", session_id)
    return {"ok": True}
