"""Session persistence: in-memory and JSON-file stores.

Stores hold serialised sessions and hand back fresh copies on every load, so a
caller can never mutate persisted state by accident. Every operation on one
session id runs under that id's lock; different ids never contend.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Protocol

from pydantic import ValidationError

from .schema import ChunkRecord, ChunkStatus, Delta, Session, SessionStatus, Skeleton, StitchReport

__all__ = [
    "InMemorySessionStore",
    "JsonFileSessionStore",
    "SessionNotFoundError",
    "SessionStateError",
    "SessionStore",
    "SessionStoreError",
]

logger = logging.getLogger(__name__)

# Fields owned by append_chunk/save_report rather than update().
_PROTECTED_FIELDS = frozenset({"id", "chunks", "report", "actual_words", "current_chunk", "created_at", "updated_at"})


class SessionStoreError(RuntimeError):
    """Raised when a session cannot be read from or written to storage."""


class SessionNotFoundError(SessionStoreError):
    """Raised when a session id is unknown to the store."""


class SessionStateError(ValueError):
    """Raised when a write would violate the session's invariants."""


class SessionStore(Protocol):
    def create(self, session: Session) -> Session: ...

    def load(self, session_id: str) -> Session: ...

    def load_skeleton(self, session_id: str) -> Optional[Skeleton]: ...

    def load_deltas(self, session_id: str) -> List[Delta]: ...

    def update(self, session_id: str, **fields: Any) -> Session: ...

    def append_chunk(self, session_id: str, record: ChunkRecord) -> Session: ...

    def save_report(self, session_id: str, report: StitchReport) -> Session: ...

    def list_sessions(self) -> List[str]: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _LockingSessionStore(ABC):
    """Shared read-modify-write logic; subclasses supply raw storage."""

    def __init__(self) -> None:
        self._registry_lock = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    # Raw storage ---------------------------------------------------------------

    @abstractmethod
    def _read(self, session_id: str) -> Optional[str]: ...

    @abstractmethod
    def _write(self, session_id: str, payload: str) -> None: ...

    @abstractmethod
    def list_sessions(self) -> List[str]: ...

    # Public API ----------------------------------------------------------------

    def create(self, session: Session) -> Session:
        with self._locked(session.id):
            if self._read(session.id) is not None:
                raise SessionStateError(f"Session {session.id} already exists")
            self._write(session.id, session.model_dump_json())
        logger.debug("Created session %s", session.id)
        return session.model_copy(deep=True)

    def load(self, session_id: str) -> Session:
        with self._locked(session_id):
            return self._load_unlocked(session_id)

    def load_skeleton(self, session_id: str) -> Optional[Skeleton]:
        return self.load(session_id).skeleton

    def load_deltas(self, session_id: str) -> List[Delta]:
        return self.load(session_id).deltas()

    def update(self, session_id: str, **fields: Any) -> Session:
        protected = _PROTECTED_FIELDS.intersection(fields)
        if protected:
            raise SessionStateError(f"Fields not writable through update(): {', '.join(sorted(protected))}")
        unknown = set(fields) - set(Session.model_fields)
        if unknown:
            raise SessionStateError(f"Unknown session fields: {', '.join(sorted(unknown))}")
        with self._locked(session_id):
            session = self._load_unlocked(session_id)
            status = fields.get("status")
            if status is not None and not session.can_transition(SessionStatus(status)):
                raise SessionStateError(f"Illegal status transition {session.status.value} -> {SessionStatus(status).value}")
            data = session.model_dump()
            data.update(fields, updated_at=_utcnow())
            try:
                updated = Session.model_validate(data)
            except ValidationError as exc:
                raise SessionStateError(f"Invalid update for session {session_id}: {exc}") from exc
            return self._save_unlocked(updated)

    def append_chunk(self, session_id: str, record: ChunkRecord) -> Session:
        if record.status is not ChunkStatus.COMPLETE:
            raise SessionStateError("Only complete chunks can be persisted")
        with self._locked(session_id):
            session = self._load_unlocked(session_id)
            if record.index != len(session.chunks):
                raise SessionStateError(
                    f"Chunk index {record.index} out of order; session {session_id} has {len(session.chunks)} chunk(s)"
                )
            chunks = [*session.chunks, record]
            session = session.model_copy(
                update={
                    "chunks": chunks,
                    "actual_words": sum(chunk.word_count for chunk in chunks),
                    "current_chunk": sum(1 for chunk in chunks if not chunk.supplemental),
                    "updated_at": _utcnow(),
                }
            )
            return self._save_unlocked(session)

    def save_report(self, session_id: str, report: StitchReport) -> Session:
        if report.session_id != session_id:
            raise SessionStateError("Report belongs to a different session")
        with self._locked(session_id):
            session = self._load_unlocked(session_id)
            session = session.model_copy(update={"report": report, "updated_at": _utcnow()})
            return self._save_unlocked(session)

    # Helpers -------------------------------------------------------------------

    @contextmanager
    def _locked(self, session_id: str) -> Iterator[None]:
        with self._registry_lock:
            lock = self._locks.setdefault(session_id, threading.Lock())
        with lock:
            yield

    def _load_unlocked(self, session_id: str) -> Session:
        payload = self._read(session_id)
        if payload is None:
            raise SessionNotFoundError(f"Unknown session: {session_id}")
        try:
            return Session.model_validate_json(payload)
        except ValidationError as exc:
            raise SessionStoreError(f"Stored session {session_id} is corrupt: {exc}") from exc

    def _save_unlocked(self, session: Session) -> Session:
        self._write(session.id, session.model_dump_json())
        return session.model_copy(deep=True)


class InMemorySessionStore(_LockingSessionStore):
    """Process-local store, mainly for tests and single-shot CLI runs."""

    def __init__(self) -> None:
        super().__init__()
        self._records: Dict[str, str] = {}

    def _read(self, session_id: str) -> Optional[str]:
        return self._records.get(session_id)

    def _write(self, session_id: str, payload: str) -> None:
        self._records[session_id] = payload

    def list_sessions(self) -> List[str]:
        return sorted(self._records)


class JsonFileSessionStore(_LockingSessionStore):
    """One ``<session id>.json`` document per session under ``root``."""

    def __init__(self, root: Path | str) -> None:
        super().__init__()
        self.root = Path(root).expanduser()
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise SessionStoreError(f"Cannot create session directory {self.root}: {exc}") from exc

    def path_for(self, session_id: str) -> Path:
        if not session_id or any(sep in session_id for sep in ("/", "\\")) or session_id.startswith("."):
            raise SessionStoreError(f"Invalid session id: {session_id!r}")
        return self.root / f"{session_id}.json"

    def _read(self, session_id: str) -> Optional[str]:
        path = self.path_for(session_id)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise SessionStoreError(f"Failed to read session {session_id}: {exc}") from exc

    def _write(self, session_id: str, payload: str) -> None:
        path = self.path_for(session_id)
        document = json.dumps(json.loads(payload), ensure_ascii=False, indent=2) + "\n"
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=f".{session_id}.", suffix=".tmp", dir=self.root)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(document)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise SessionStoreError(f"Failed to write session {session_id}: {exc}") from exc

    def list_sessions(self) -> List[str]:
        try:
            return sorted(path.stem for path in self.root.glob("*.json") if not path.name.startswith("."))
        except OSError as exc:
            raise SessionStoreError(f"Failed to list sessions in {self.root}: {exc}") from exc
