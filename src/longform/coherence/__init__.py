"""Coherence pipeline: skeleton, chunked generation, deltas and stitching."""

from .chunking import (
    ChunkGenerator,
    ChunkPromptBuilder,
    count_words,
    minimum_words,
    plan_chunk_count,
    plan_chunk_targets,
)
from .content import (
    ContentBundle,
    ContentItem,
    ContentKind,
    ContentRetriever,
    JsonContentRetriever,
    RetrievalError,
)
from .delta import extract_delta, negate_commitment
from .events import EventKind, ProgressEvent, decode_sse
from .orchestrator import CoherenceOrchestrator, CoherenceRequest
from .schema import (
    ALLOWED_TRANSITIONS,
    ChunkRecord,
    ChunkStatus,
    CoherenceScore,
    Delta,
    Session,
    SessionKind,
    SessionStatus,
    Skeleton,
    SourceDigest,
    StitchReport,
)
from .skeleton import SkeletonExtractor, SkeletonParseError, fallback_skeleton, format_source_digest
from .store import (
    InMemorySessionStore,
    JsonFileSessionStore,
    SessionNotFoundError,
    SessionStateError,
    SessionStore,
    SessionStoreError,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "ChunkGenerator",
    "ChunkPromptBuilder",
    "ChunkRecord",
    "ChunkStatus",
    "CoherenceOrchestrator",
    "CoherenceRequest",
    "CoherenceScore",
    "ContentBundle",
    "ContentItem",
    "ContentKind",
    "ContentRetriever",
    "Delta",
    "EventKind",
    "InMemorySessionStore",
    "JsonContentRetriever",
    "JsonFileSessionStore",
    "ProgressEvent",
    "RetrievalError",
    "Session",
    "SessionKind",
    "SessionNotFoundError",
    "SessionStateError",
    "SessionStatus",
    "SessionStore",
    "SessionStoreError",
    "Skeleton",
    "SkeletonExtractor",
    "SkeletonParseError",
    "SourceDigest",
    "StitchReport",
    "count_words",
    "decode_sse",
    "extract_delta",
    "fallback_skeleton",
    "format_source_digest",
    "minimum_words",
    "negate_commitment",
    "plan_chunk_count",
    "plan_chunk_targets",
]
