"""
Fuel Statement API Routes

Upload a fuel card statement, review and override the reconciliation,
then commit or cancel the batch.
"""

import logging
import os
import threading
from collections import OrderedDict
from datetime import datetime, timedelta
from functools import lru_cache

from fastapi import APIRouter, Depends, File, Header, HTTPException, UploadFile
from pydantic import BaseModel

from fuel_import.config import FuelImportConfig, load_config
from fuel_import.errors import (
    ParseError,
    SessionClosedError,
    StoreError,
    StoreUnavailableError,
    UnknownTransactionError,
    ValidationError,
)
from fuel_import.models import TransactionType
from fuel_import.processor import FuelStatementProcessor
from fuel_import.session import ReconciliationSession, SessionState
from fuel_import.store import FuelDataStore

from ..database import get_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/fuel-statements", tags=["fuel-statements"])

SESSION_TTL_MINUTES = int(os.getenv("FUEL_SESSION_TTL_MINUTES", "120"))


class VehicleOverrideRequest(BaseModel):
    """Assign a fleet vehicle to a transaction."""

    vehicle_id: str


class TypeOverrideRequest(BaseModel):
    """Change a transaction's type."""

    transaction_type: TransactionType


class CommitRequest(BaseModel):
    """Commit options."""

    create_expense_transactions: bool | None = None
    statement_id: str | None = None


class SessionRegistry:
    """In-process store of open reconciliation sessions.

    Committed and cancelled sessions are dropped, keeping only their final
    state so later requests get 409 instead of 404. Open sessions expire
    ``ttl`` after upload.
    """

    def __init__(self, ttl: timedelta | None = None, max_closed: int = 1000):
        self.ttl = ttl if ttl is not None else timedelta(minutes=SESSION_TTL_MINUTES)
        self.max_closed = max_closed
        self._sessions: dict[str, ReconciliationSession] = {}
        self._closed: OrderedDict[str, SessionState] = OrderedDict()
        self._lock = threading.Lock()

    def add(self, session: ReconciliationSession) -> None:
        with self._lock:
            self._expire()
            self._sessions[session.session_id] = session

    def get(self, session_id: str) -> ReconciliationSession:
        with self._lock:
            self._expire()
            session = self._sessions.get(session_id)
            state = self._closed.get(session_id)

        if session is not None:
            return session
        if state is not None:
            raise HTTPException(status_code=409, detail=f"Session {session_id} is {state.value}")
        raise HTTPException(status_code=404, detail="Session not found")

    def closed_state(self, session_id: str) -> SessionState | None:
        with self._lock:
            return self._closed.get(session_id)

    def close(self, session: ReconciliationSession) -> None:
        """Drop a committed or cancelled session, remembering its state."""
        with self._lock:
            self._sessions.pop(session.session_id, None)
            self._remember(session.session_id, session.state)

    def _remember(self, session_id: str, state: SessionState) -> None:
        self._closed[session_id] = state
        while len(self._closed) > self.max_closed:
            self._closed.popitem(last=False)

    def _expire(self) -> None:
        cutoff = datetime.now() - self.ttl
        expired = [sid for sid, s in self._sessions.items() if s.created_at < cutoff]
        for session_id in expired:
            session = self._sessions.pop(session_id)
            if session.is_open:
                session.cancel()
            self._remember(session_id, session.state)
            logger.info(f"Session {session_id} expired")

    def __len__(self) -> int:
        return len(self._sessions)


_registry = SessionRegistry()


def get_registry() -> SessionRegistry:
    """Session registry dependency."""
    return _registry


@lru_cache
def get_config() -> FuelImportConfig:
    """Pipeline configuration dependency, loaded once."""
    return load_config()


def get_processor(
    store: FuelDataStore = Depends(get_store),
    config: FuelImportConfig = Depends(get_config),
) -> FuelStatementProcessor:
    return FuelStatementProcessor(store, config=config)


def _http_error(error: Exception) -> HTTPException:
    """Map pipeline errors to HTTP errors."""
    if isinstance(error, UnknownTransactionError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, SessionClosedError):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, ValidationError):
        return HTTPException(
            status_code=422,
            detail={"message": str(error), "source_ids": error.source_ids},
        )
    if isinstance(error, ParseError):
        return HTTPException(
            status_code=422,
            detail={"message": str(error), "row_errors": [str(e) for e in error.row_errors]},
        )
    if isinstance(error, StoreUnavailableError):
        detail = {"message": str(error)}
        if error.result is not None:
            detail["result"] = error.result.to_dict()
        return HTTPException(status_code=503, detail=detail)
    if isinstance(error, ValueError):
        return HTTPException(status_code=422, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))


@router.post("/process")
async def process_statement(
    file: UploadFile = File(...),
    processor: FuelStatementProcessor = Depends(get_processor),
    registry: SessionRegistry = Depends(get_registry),
) -> dict:
    """Parse and reconcile an uploaded statement.

    Args:
        file: CSV or Excel statement
        processor: Statement processor
        registry: Open sessions

    Returns:
        Session payload for the verification screen
    """
    data = await file.read()

    try:
        session = processor.process(data, filename=file.filename)
    except (ParseError, StoreError) as e:
        logger.warning(f"Failed to process {file.filename}: {e}")
        raise _http_error(e)

    registry.add(session)
    return session.to_dict()


@router.get("/sessions/{session_id}")
async def get_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> dict:
    """Get a session with its current overrides.

    Closed sessions are no longer held; only their final state is returned.
    """
    state = registry.closed_state(session_id)
    if state is not None:
        return {"session_id": session_id, "state": state.value}
    return registry.get(session_id).to_dict()


@router.put("/sessions/{session_id}/transactions/{source_id}/vehicle")
async def override_vehicle(
    session_id: str,
    source_id: str,
    request: VehicleOverrideRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> dict:
    """Assign a vehicle to a transaction."""
    session = registry.get(session_id)

    try:
        session.apply_vehicle_override(source_id, request.vehicle_id)
    except (UnknownTransactionError, SessionClosedError, ValueError) as e:
        raise _http_error(e)

    return session.to_dict()


@router.put("/sessions/{session_id}/transactions/{source_id}/type")
async def override_type(
    session_id: str,
    source_id: str,
    request: TypeOverrideRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> dict:
    """Change a transaction's type."""
    session = registry.get(session_id)

    try:
        session.apply_type_override(source_id, request.transaction_type)
    except (UnknownTransactionError, SessionClosedError, ValueError) as e:
        raise _http_error(e)

    return session.to_dict()


@router.delete("/sessions/{session_id}/transactions/{source_id}/overrides")
async def clear_overrides(
    session_id: str,
    source_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> dict:
    """Restore a transaction's original classification."""
    session = registry.get(session_id)

    try:
        session.clear_overrides(source_id)
    except (UnknownTransactionError, SessionClosedError) as e:
        raise _http_error(e)

    return session.to_dict()


@router.post("/sessions/{session_id}/commit")
async def commit_session(
    session_id: str,
    request: CommitRequest | None = None,
    x_user_id: str | None = Header(None, alias="X-User-ID"),
    processor: FuelStatementProcessor = Depends(get_processor),
    registry: SessionRegistry = Depends(get_registry),
) -> dict:
    """Import the session's new and flagged transactions.

    Args:
        session_id: Session to commit
        request: Commit options
        x_user_id: User approving the import
        processor: Statement processor
        registry: Open sessions

    Returns:
        Commit result with per-row outcome
    """
    session = registry.get(session_id)
    request = request or CommitRequest()

    try:
        result = processor.commit(
            session,
            create_expense_transactions=request.create_expense_transactions,
            statement_id=request.statement_id,
            user_id=x_user_id,
        )
    except (ValidationError, SessionClosedError, StoreError) as e:
        logger.warning(f"Commit of session {session_id} failed: {e}")
        raise _http_error(e)

    registry.close(session)
    return {"session_id": session_id, **result.to_dict()}


@router.delete("/sessions/{session_id}")
async def cancel_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> dict:
    """Cancel a session without importing anything."""
    session = registry.get(session_id)

    try:
        session.cancel()
    except SessionClosedError as e:
        raise _http_error(e)

    registry.close(session)
    return {"session_id": session_id, "state": session.state.value}
