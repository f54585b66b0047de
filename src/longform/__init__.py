"""longform package: coherent long-form generation in bounded chunks."""

from .config import CoherenceConfig, LLMConfig, LongformConfig
from .paths import SessionPathConfig, resolve_session_root
from .coherence.orchestrator import CoherenceOrchestrator, CoherenceRequest
from .coherence.store import InMemorySessionStore, JsonFileSessionStore

__all__ = [
    "CoherenceConfig",
    "LLMConfig",
    "LongformConfig",
    "SessionPathConfig",
    "resolve_session_root",
    "CoherenceOrchestrator",
    "CoherenceRequest",
    "InMemorySessionStore",
    "JsonFileSessionStore",
]
