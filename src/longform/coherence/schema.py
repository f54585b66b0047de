"""Structured schema definitions for coherence sessions and their artefacts."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "ALLOWED_TRANSITIONS",
    "ChunkRecord",
    "ChunkStatus",
    "CoherenceScore",
    "Delta",
    "FrozenBaseModel",
    "Session",
    "SessionKind",
    "SessionStatus",
    "Skeleton",
    "SourceDigest",
    "StitchReport",
    "TERMINAL_STATUSES",
    "DEFAULT_OUTLINE",
]

DEFAULT_OUTLINE: Tuple[str, ...] = ("Introduction", "Main Analysis", "Conclusion")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FrozenBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class SessionKind(str, Enum):
    CHAT = "chat"
    DEBATE = "debate"
    INTERVIEW = "interview"
    DIALOGUE = "dialogue"
    DOCUMENT = "document"


class SessionStatus(str, Enum):
    PENDING = "pending"
    SKELETON = "skeleton"
    CHUNKING = "chunking"
    STITCHING = "stitching"
    COMPLETE = "complete"
    FAILED = "failed"


class ChunkStatus(str, Enum):
    PENDING = "pending"
    COMPLETE = "complete"
    FAILED = "failed"


class CoherenceScore(str, Enum):
    PASS = "pass"
    NEEDS_REPAIR = "needs_repair"


TERMINAL_STATUSES = frozenset({SessionStatus.COMPLETE, SessionStatus.FAILED})

# failed -> * is only taken through an explicit operator retry.
ALLOWED_TRANSITIONS: Dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.PENDING: frozenset({SessionStatus.SKELETON, SessionStatus.FAILED}),
    SessionStatus.SKELETON: frozenset({SessionStatus.CHUNKING, SessionStatus.FAILED}),
    SessionStatus.CHUNKING: frozenset({SessionStatus.STITCHING, SessionStatus.FAILED}),
    SessionStatus.STITCHING: frozenset({SessionStatus.COMPLETE, SessionStatus.FAILED}),
    SessionStatus.FAILED: frozenset({SessionStatus.SKELETON, SessionStatus.CHUNKING, SessionStatus.STITCHING}),
    SessionStatus.COMPLETE: frozenset(),
}


class SourceDigest(FrozenBaseModel):
    """Citation-coded source lines the skeleton was derived from."""

    positions: Tuple[str, ...] = Field(default=(), description="Lines coded [P#].")
    quotes: Tuple[str, ...] = Field(default=(), description="Lines coded [Q#].")
    arguments: Tuple[str, ...] = Field(default=(), description="Lines coded [A#].")
    works: Tuple[str, ...] = Field(default=(), description="Lines coded [W#], excerpts pre-truncated.")

    def counts(self) -> Dict[str, int]:
        return {
            "positions": len(self.positions),
            "quotes": len(self.quotes),
            "arguments": len(self.arguments),
            "works": len(self.works),
        }

    def is_empty(self) -> bool:
        return not any(self.counts().values())


class Skeleton(FrozenBaseModel):
    """Structural contract shared by every chunk of one job."""

    thesis: str = Field(..., description="Central claim or purpose, one sentence.")
    outline: Tuple[str, ...] = Field(default=(), description="Ordered section labels.")
    key_terms: Dict[str, str] = Field(default_factory=dict, description="Term to definition.")
    commitments: Tuple[str, ...] = Field(default=(), description="Assertions later chunks must not contradict.")
    entities: Tuple[str, ...] = Field(default=(), description="Salient concepts named by the request.")
    source_digest: SourceDigest = Field(default_factory=SourceDigest)
    fallback: bool = Field(default=False, description="True when structuring failed and defaults were used.")

    def section_for(self, index: int) -> str:
        if 0 <= index < len(self.outline):
            return self.outline[index]
        return f"Part {index + 1}"

    def summary_text(self) -> str:
        lines: list[str] = ["THESIS:", self.thesis, "", "OUTLINE:"]
        lines.extend(f"  {idx}. {section}" for idx, section in enumerate(self.outline, start=1))
        if self.commitments:
            lines.append("")
            lines.append("COMMITMENTS:")
            lines.extend(f"  {idx}. {item}" for idx, item in enumerate(self.commitments, start=1))
        if self.key_terms:
            lines.append("")
            lines.append("KEY TERMS:")
            lines.extend(f"  - {term}: {definition}" for term, definition in self.key_terms.items())
        counts = self.source_digest.counts()
        lines.append("")
        lines.append("DATABASE ITEMS:")
        lines.extend(f"  {name.title()}: {count}" for name, count in counts.items())
        return "\n".join(lines) + "\n"


class Delta(FrozenBaseModel):
    """Compact summary of what one chunk claimed."""

    claims_added: Tuple[str, ...] = ()
    terms_used: Tuple[str, ...] = ()
    conflicts_detected: Tuple[str, ...] = ()
    continuity_notes: str = ""


class ChunkRecord(FrozenBaseModel):
    """One bounded unit of generated output."""

    index: int = Field(..., ge=0)
    target_words: int = Field(..., gt=0)
    text: str = ""
    word_count: int = Field(default=0, ge=0)
    delta: Delta = Field(default_factory=Delta)
    status: ChunkStatus = ChunkStatus.PENDING
    supplemental: bool = False
    completed_at: Optional[datetime] = None


class StitchReport(FrozenBaseModel):
    """Length and conflict verdict produced once a session completes."""

    session_id: str
    total_words: int
    target_words: int
    conflicts: Tuple[str, ...] = ()
    coherence_score: CoherenceScore
    supplemental_chunk: bool = False

    @classmethod
    def from_chunks(cls, session_id: str, target_words: int, chunks: List[ChunkRecord]) -> "StitchReport":
        conflicts = tuple(conflict for chunk in chunks for conflict in chunk.delta.conflicts_detected)
        return cls(
            session_id=session_id,
            total_words=sum(chunk.word_count for chunk in chunks),
            target_words=target_words,
            conflicts=conflicts,
            coherence_score=CoherenceScore.PASS if not conflicts else CoherenceScore.NEEDS_REPAIR,
            supplemental_chunk=any(chunk.supplemental for chunk in chunks),
        )


class Session(BaseModel):
    """Durable record of one end-to-end generation job."""

    model_config = ConfigDict(extra="ignore", validate_assignment=True)

    id: str
    kind: SessionKind
    subject_id: str
    subject_label: str
    user_prompt: str
    topic: Optional[str] = None
    model: Optional[str] = None
    enhanced: bool = False
    skeleton: Optional[Skeleton] = None
    target_words: int = Field(..., gt=0)
    actual_words: int = 0
    total_chunks: int = 0
    current_chunk: int = 0
    chunk_targets: List[int] = Field(default_factory=list)
    chunks: List[ChunkRecord] = Field(default_factory=list)
    status: SessionStatus = SessionStatus.PENDING
    error_message: Optional[str] = None
    report: Optional[StitchReport] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def can_transition(self, target: SessionStatus) -> bool:
        return target == self.status or target in ALLOWED_TRANSITIONS[self.status]

    def deltas(self) -> List[Delta]:
        return [chunk.delta for chunk in self.chunks]

    def nominal_chunks(self) -> List[ChunkRecord]:
        return [chunk for chunk in self.chunks if not chunk.supplemental]

    def has_supplemental_chunk(self) -> bool:
        return any(chunk.supplemental for chunk in self.chunks)

    def full_text(self) -> str:
        return "\n\n".join(chunk.text.strip() for chunk in self.chunks if chunk.text.strip())
