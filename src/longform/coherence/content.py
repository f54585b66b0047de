"""Source content model and the retrieval boundary."""

from __future__ import annotations

import json
import logging
import math
import re
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Protocol, Tuple

from pydantic import Field, ValidationError

from .schema import FrozenBaseModel

__all__ = [
    "CITATION_PREFIXES",
    "ContentBundle",
    "ContentItem",
    "ContentKind",
    "ContentRetriever",
    "JsonContentRetriever",
    "RetrievalError",
]

logger = logging.getLogger(__name__)

TOKEN_PATTERN = re.compile(r"[a-z0-9]+")


class RetrievalError(RuntimeError):
    """Raised when source content cannot be obtained for a session."""


class ContentKind(str, Enum):
    POSITION = "position"
    QUOTE = "quote"
    ARGUMENT = "argument"
    WORK_EXCERPT = "work_excerpt"


CITATION_PREFIXES: dict[ContentKind, str] = {
    ContentKind.POSITION: "P",
    ContentKind.QUOTE: "Q",
    ContentKind.ARGUMENT: "A",
    ContentKind.WORK_EXCERPT: "W",
}

# Bundle field and accepted text columns per kind, most specific first.
_KIND_FIELDS: dict[ContentKind, Tuple[str, Tuple[str, ...]]] = {
    ContentKind.POSITION: ("positions", ("positionText", "position_text", "text")),
    ContentKind.QUOTE: ("quotes", ("quoteText", "quote_text", "text")),
    ContentKind.ARGUMENT: ("arguments", ("argumentText", "argument_text", "text")),
    ContentKind.WORK_EXCERPT: ("works", ("workText", "work_text", "text", "content")),
}
_AUTHOR_FIELDS = ("author_name", "thinker", "author")
_RELEVANCE_FIELDS = ("relevance", "relevanceScore", "relevance_score")
_TITLE_FIELDS = ("source_title", "title", "source")
_SUBJECT_FIELDS = ("subject_id", "thinkerId", "thinker_id")


class ContentItem(FrozenBaseModel):
    """A unit of source material attributed to one author."""

    kind: ContentKind
    id: str
    author_name: str = ""
    text: str = Field(..., min_length=1)
    relevance: Optional[float] = None
    source_title: Optional[str] = None

    @property
    def citation_prefix(self) -> str:
        return CITATION_PREFIXES[self.kind]


def _first_present(row: Mapping[str, Any], names: Iterable[str]) -> Any:
    for name in names:
        value = row.get(name)
        if value not in (None, ""):
            return value
    return None


def _item_from_row(kind: ContentKind, row: Mapping[str, Any], position: int) -> Optional[ContentItem]:
    _, text_fields = _KIND_FIELDS[kind]
    text = _first_present(row, text_fields)
    if not isinstance(text, str) or not text.strip():
        return None
    relevance = _first_present(row, _RELEVANCE_FIELDS)
    item_id = row.get("id")
    return ContentItem(
        kind=kind,
        id=str(item_id) if item_id is not None else f"{CITATION_PREFIXES[kind]}{position}",
        author_name=str(_first_present(row, _AUTHOR_FIELDS) or ""),
        text=text.strip(),
        relevance=float(relevance) if relevance is not None else None,
        source_title=_first_present(row, _TITLE_FIELDS),
    )


class ContentBundle(FrozenBaseModel):
    """Typed, per-kind collections of source items for one request."""

    positions: Tuple[ContentItem, ...] = ()
    quotes: Tuple[ContentItem, ...] = ()
    arguments: Tuple[ContentItem, ...] = ()
    works: Tuple[ContentItem, ...] = ()

    @classmethod
    def empty(cls) -> "ContentBundle":
        return cls()

    @classmethod
    def from_rows(cls, rows: Mapping[str, Iterable[Mapping[str, Any]]]) -> "ContentBundle":
        """Convert untyped retrieval rows into typed items.

        ``rows`` maps ``positions``, ``quotes``, ``arguments`` and ``works`` to
        row dictionaries. Column names follow either the camelCase or the
        snake_case convention; rows without usable text are dropped.
        """

        collected: dict[str, list[ContentItem]] = {}
        for kind, (field_name, _) in _KIND_FIELDS.items():
            items: list[ContentItem] = []
            for position, row in enumerate(rows.get(field_name) or (), start=1):
                if not isinstance(row, Mapping):
                    logger.debug("Skipping non-mapping %s row: %r", field_name, row)
                    continue
                try:
                    item = _item_from_row(kind, row, position)
                except (ValidationError, TypeError, ValueError) as exc:
                    logger.debug("Skipping malformed %s row: %s", field_name, exc)
                    continue
                if item is not None:
                    items.append(item)
            collected[field_name] = items
        return cls(**{name: tuple(items) for name, items in collected.items()})

    def bounded(
        self,
        *,
        positions: int,
        quotes: int,
        arguments: int,
        works: int,
    ) -> "ContentBundle":
        return ContentBundle(
            positions=self.positions[:positions],
            quotes=self.quotes[:quotes],
            arguments=self.arguments[:arguments],
            works=self.works[:works],
        )

    def total(self) -> int:
        return len(self.positions) + len(self.quotes) + len(self.arguments) + len(self.works)

    def is_empty(self) -> bool:
        return self.total() == 0


class ContentRetriever(Protocol):
    """External collaborator that supplies source content for a subject."""

    def fetch_content(self, subject_id: str, query: str, limit: int) -> ContentBundle:
        """Return up to ``limit`` items per kind relevant to ``query``."""


class JsonContentRetriever:
    """Lexical retriever over a JSON corpus file.

    The file holds an object with ``positions``, ``quotes``, ``arguments`` and
    ``works`` lists. Rows tagged with a subject id are only returned for that
    subject; untagged rows are shared.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path).expanduser()
        self._rows: dict[str, list[Mapping[str, Any]]] | None = None

    def fetch_content(self, subject_id: str, query: str, limit: int) -> ContentBundle:
        rows = self._load_rows()
        query_vector = _term_counts(query)
        selected: dict[str, list[Mapping[str, Any]]] = {}
        for kind, (field_name, text_fields) in _KIND_FIELDS.items():
            candidates = [row for row in rows.get(field_name, []) if _matches_subject(row, subject_id)]
            scored = []
            for row in candidates:
                text = _first_present(row, text_fields)
                score = _cosine_similarity(query_vector, _term_counts(str(text or "")))
                scored.append((score, row))
            scored.sort(key=lambda pair: pair[0], reverse=True)
            kind_limit = max(1, limit // 2) if kind is ContentKind.WORK_EXCERPT else limit
            selected[field_name] = [
                {**row, "relevance": round(score, 6)} for score, row in scored[:kind_limit]
            ]
        bundle = ContentBundle.from_rows(selected)
        logger.info(
            "Retrieved %d item(s) for subject %s from %s",
            bundle.total(),
            subject_id,
            self.path,
        )
        return bundle

    def _load_rows(self) -> dict[str, list[Mapping[str, Any]]]:
        if self._rows is not None:
            return self._rows
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise RetrievalError(f"Content corpus not found: {self.path}") from exc
        except (OSError, json.JSONDecodeError) as exc:
            raise RetrievalError(f"Failed to read content corpus {self.path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise RetrievalError(f"Content corpus {self.path} must contain a JSON object")
        self._rows = {
            field_name: [row for row in payload.get(field_name) or [] if isinstance(row, Mapping)]
            for field_name, _ in _KIND_FIELDS.values()
        }
        return self._rows


def _matches_subject(row: Mapping[str, Any], subject_id: str) -> bool:
    tagged = _first_present(row, _SUBJECT_FIELDS)
    return tagged is None or str(tagged) == subject_id


def _term_counts(text: str) -> dict[str, float]:
    counts: dict[str, float] = {}
    for token in TOKEN_PATTERN.findall(text.lower()):
        counts[token] = counts.get(token, 0.0) + 1.0
    return counts


def _cosine_similarity(left: dict[str, float], right: dict[str, float]) -> float:
    if not left or not right:
        return 0.0
    dot = sum(value * right.get(key, 0.0) for key, value in left.items())
    left_norm = math.sqrt(sum(v * v for v in left.values()))
    right_norm = math.sqrt(sum(v * v for v in right.values()))
    if left_norm == 0.0 or right_norm == 0.0:
        return 0.0
    return dot / (left_norm * right_norm)
