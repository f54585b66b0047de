"""Path helpers for session persistence."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

__all__ = [
    "DEFAULT_SESSION_ROOT",
    "SessionPathConfig",
    "resolve_session_root",
]

DEFAULT_SESSION_ROOT = Path(os.getenv("LONGFORM_OUTPUT_ROOT", "outputs")) / "sessions"


def _normalise(path: Path | str) -> Path:
    return Path(path).expanduser()


def resolve_session_root(path: Path | str | None = None, *, create: bool = True) -> Path:
    candidate = _normalise(path or DEFAULT_SESSION_ROOT)
    if create:
        candidate.mkdir(parents=True, exist_ok=True)
    return candidate


@dataclass(slots=True)
class SessionPathConfig:
    """Where session records are written by the file-backed store."""

    session_root: Path = DEFAULT_SESSION_ROOT
    create: bool = True
