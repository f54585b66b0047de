"""Dataclass-driven configuration for the longform package."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Iterable

from .paths import SessionPathConfig, resolve_session_root

__all__ = [
    "LLMConfig",
    "CoherenceConfig",
    "LongformConfig",
]

BACKEND_API_KEY_ENVS: dict[str, tuple[str, ...]] = {
    "openai": ("OPENAI_API_KEY",),
    "anthropic": ("ANTHROPIC_API_KEY",),
}


def _env_float(name: str, default: float | None = None) -> float | None:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:  # pragma: no cover - malformed env value
        return default


def _env_int(name: str, default: int | None = None) -> int | None:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:  # pragma: no cover - malformed env value
        return default


@dataclass(slots=True)
class LLMConfig:
    """Configuration for LangChain-backed chat providers."""

    # read at construction so values from a .env loaded by the CLI apply
    model: str = field(default_factory=lambda: os.getenv("LONGFORM_MODEL", "gpt-4o"))
    base_url: str | None = field(default_factory=lambda: os.getenv("LONGFORM_BASE_URL"))
    temperature: float = field(default_factory=lambda: _env_float("LONGFORM_TEMPERATURE", 0.7))
    max_tokens: int | None = field(default_factory=lambda: _env_int("LONGFORM_MAX_TOKENS"))
    api_key_env: str = field(default_factory=lambda: os.getenv("LONGFORM_API_KEY_ENV", "LONGFORM_API_KEY"))

    def resolve_api_key(self, backend: str, override: str | None = None) -> str | None:
        if override:
            return override
        env_candidates: Iterable[str | None] = (self.api_key_env, *BACKEND_API_KEY_ENVS.get(backend, ()))
        for name in env_candidates:
            if not name:
                continue
            value = os.getenv(name)
            if value:
                return value
        return None

    def provider_kwargs(
        self,
        *,
        model: str | None = None,
        base_url: str | None = None,
        api_key: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> dict[str, object | None]:
        return {
            "model": model or self.model,
            "base_url": base_url or self.base_url,
            "api_key": api_key,
            "temperature": self.temperature if temperature is None else temperature,
            "max_tokens": self.max_tokens if max_tokens is None else max_tokens,
        }


@dataclass(slots=True)
class CoherenceConfig:
    """Tuning knobs for skeleton extraction, chunking and stitching."""

    words_per_chunk: int = 1000
    shortfall_ratio: float = 0.9
    chunk_delay_seconds: float = 2.0
    word_buffer_ratio: float = 1.2
    chunk_max_tokens: int = 4096
    chunk_temperature: float = 0.7
    skeleton_max_tokens: int = 2000
    skeleton_temperature: float = 0.3
    max_positions: int = 20
    max_quotes: int = 20
    max_arguments: int = 10
    max_work_excerpts: int = 5
    excerpt_chars: int = 500
    claim_limit: int = 5
    claim_chars: int = 100
    conflict_probe_chars: int = 30
    prior_claims_limit: int = 12
    enhanced: bool = False

    def __post_init__(self) -> None:
        if self.words_per_chunk <= 0:
            raise ValueError("words_per_chunk must be positive")
        if not (0.0 < self.shortfall_ratio <= 1.0):
            raise ValueError("shortfall_ratio must be in (0, 1]")
        if self.chunk_delay_seconds <= 0:
            raise ValueError("chunk_delay_seconds must be positive")
        if self.word_buffer_ratio < 1.0:
            raise ValueError("word_buffer_ratio must be at least 1")
        for name in ("max_positions", "max_quotes", "max_arguments", "max_work_excerpts"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")
        if self.excerpt_chars <= 0:
            raise ValueError("excerpt_chars must be positive")

    @classmethod
    def from_env(cls, **overrides: object) -> "CoherenceConfig":
        values: dict[str, object] = {
            "words_per_chunk": _env_int("LONGFORM_WORDS_PER_CHUNK", 1000),
            "chunk_delay_seconds": _env_float("LONGFORM_CHUNK_DELAY", 2.0),
            "shortfall_ratio": _env_float("LONGFORM_SHORTFALL_RATIO", 0.9),
            "enhanced": os.getenv("LONGFORM_ENHANCED", "false").lower() == "true",
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)  # type: ignore[arg-type]

    @property
    def content_limit(self) -> int:
        """Largest per-kind bound, used when asking the retriever for items."""

        return max(self.max_positions, self.max_quotes, self.max_arguments, self.max_work_excerpts)


@dataclass(slots=True)
class LongformConfig:
    """Primary configuration entry point for the coherence pipeline."""

    paths: SessionPathConfig = field(default_factory=SessionPathConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    coherence: CoherenceConfig = field(default_factory=CoherenceConfig)

    def with_session_root(self, session_root: Path | str) -> "LongformConfig":
        new_paths = replace(
            self.paths,
            session_root=resolve_session_root(session_root, create=self.paths.create),
        )
        return replace(self, paths=new_paths)

    @property
    def session_root(self) -> Path:
        return resolve_session_root(self.paths.session_root, create=self.paths.create)

    def as_provider_kwargs(self, **overrides: object) -> dict[str, object | None]:
        return self.llm.provider_kwargs(**overrides)  # type: ignore[arg-type]
