"""Per-chunk delta extraction.

Everything here is a pure function of the chunk text and the skeleton. The
conflict probe is a lexical heuristic: it flags text that appears to restate a
commitment with its verb inverted, and it is advisory only.
"""

from __future__ import annotations

import re
from typing import Optional

from .chunking import count_words
from .schema import Delta, Skeleton

__all__ = [
    "CLAIM_MARKERS",
    "VERB_PAIRS",
    "extract_delta",
    "negate_commitment",
    "split_sentences",
]

CLAIM_MARKERS = ("assert", "claim", "argue", "position", "contend", "maintain", "hold that")
MIN_SENTENCE_CHARS = 20

VERB_PAIRS: tuple[tuple[str, str], ...] = (
    ("asserts", "rejects"),
    ("affirms", "denies"),
    ("accepts", "disputes"),
    ("endorses", "repudiates"),
    ("supports", "opposes"),
)

_SWAPS: dict[str, str] = {}
for _left, _right in VERB_PAIRS:
    _SWAPS[_left] = _right
    _SWAPS[_right] = _left

_VERB_PATTERN = re.compile(r"\b(" + "|".join(sorted(_SWAPS)) + r")\b", re.IGNORECASE)
_SENTENCE_PATTERN = re.compile(r"[.!?]+")


def _swap(match: re.Match[str]) -> str:
    word = match.group(0)
    replacement = _SWAPS[word.lower()]
    if word.isupper():
        return replacement.upper()
    if word[0].isupper():
        return replacement.capitalize()
    return replacement


def negate_commitment(commitment: str) -> Optional[str]:
    """Invert every assertion/rejection verb in one pass.

    Returns ``None`` when the commitment carries no verb from :data:`VERB_PAIRS`.
    """

    negated, swaps = _VERB_PATTERN.subn(_swap, commitment)
    return negated if swaps else None


def split_sentences(text: str) -> list[str]:
    return [part.strip() for part in _SENTENCE_PATTERN.split(text) if len(part.strip()) > MIN_SENTENCE_CHARS]


def _normalise(text: str) -> str:
    return " ".join(text.split()).lower()


def extract_delta(
    chunk_text: str,
    skeleton: Skeleton,
    *,
    claim_limit: int = 5,
    claim_chars: int = 100,
    probe_chars: int = 30,
) -> Delta:
    claims: list[str] = []
    for sentence in split_sentences(chunk_text):
        if len(claims) >= claim_limit:
            break
        lowered = sentence.lower()
        if any(marker in lowered for marker in CLAIM_MARKERS):
            claims.append(sentence[:claim_chars])

    haystack = _normalise(chunk_text)
    terms = tuple(term for term in skeleton.key_terms if term.strip() and term.lower() in chunk_text.lower())

    conflicts: list[str] = []
    for commitment in skeleton.commitments:
        negation = negate_commitment(commitment)
        if negation is None:
            continue
        normalised = _normalise(negation)
        # the probe must include the swapped verb however long the subject is
        verb = _VERB_PATTERN.search(normalised)
        probe = normalised[: max(probe_chars, verb.end() if verb else 0)].strip()
        if probe and probe in haystack:
            conflicts.append(f"Potential contradiction with commitment: {commitment}")

    return Delta(
        claims_added=tuple(claims),
        terms_used=terms,
        conflicts_detected=tuple(conflicts),
        continuity_notes=f"Chunk produced {count_words(chunk_text)} words",
    )
