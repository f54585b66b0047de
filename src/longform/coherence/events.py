"""Progress events emitted while a session runs, with SSE framing."""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import Field, ValidationError

from .schema import FrozenBaseModel

__all__ = [
    "DONE_SENTINEL",
    "EventKind",
    "ProgressEvent",
    "decode_sse",
]

DONE_SENTINEL = "[DONE]"
SSE_PREFIX = "data:"


class EventKind(str, Enum):
    SESSION_STARTED = "session_started"
    SKELETON = "skeleton"
    CHUNK_START = "chunk_start"
    FRAGMENT = "fragment"
    CHUNK_COMPLETE = "chunk_complete"
    CONFLICT_WARNING = "conflict_warning"
    PAUSE = "pause"
    SHORTFALL = "shortfall"
    REPORT = "report"
    FAILURE = "failure"
    DONE = "done"


class ProgressEvent(FrozenBaseModel):
    """One observable step of a coherence session."""

    kind: EventKind
    session_id: str = ""
    text: str = ""
    data: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def done(cls, session_id: str = "") -> "ProgressEvent":
        return cls(kind=EventKind.DONE, session_id=session_id)

    @property
    def is_terminal(self) -> bool:
        return self.kind is EventKind.DONE

    def to_sse(self) -> str:
        if self.kind is EventKind.DONE:
            return f"{SSE_PREFIX} {DONE_SENTINEL}\n\n"
        return f"{SSE_PREFIX} {self.model_dump_json()}\n\n"


def decode_sse(line: str) -> Optional[ProgressEvent]:
    """Decode one SSE ``data:`` line.

    Blank lines, comments, malformed JSON and unknown event kinds yield
    ``None`` so a consumer can skip them without failing.
    """

    stripped = (line or "").strip()
    if not stripped.startswith(SSE_PREFIX):
        return None
    body = stripped[len(SSE_PREFIX) :].strip()
    if body == DONE_SENTINEL:
        return ProgressEvent.done()
    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    try:
        return ProgressEvent.model_validate(payload)
    except ValidationError:
        return None
