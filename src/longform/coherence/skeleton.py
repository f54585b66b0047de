"""Skeleton extraction: the structural contract for a long-form job.

The extractor makes exactly one generation call. Whatever the model returns is
reduced to the first JSON object it contains and validated; when that fails the
job proceeds on a default skeleton so a structuring hiccup never blocks
generation.
"""

from __future__ import annotations

import json
import logging
import textwrap
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..config import CoherenceConfig
from ..llm.providers import ProviderError, TextGenerator
from .content import ContentBundle
from .schema import DEFAULT_OUTLINE, Skeleton, SourceDigest

__all__ = [
    "SkeletonExtractor",
    "SkeletonParseError",
    "fallback_skeleton",
    "format_source_digest",
    "parse_skeleton_payload",
]

logger = logging.getLogger(__name__)

_DECODER = json.JSONDecoder()


class SkeletonParseError(ValueError):
    """Raised when a model response does not contain a usable skeleton."""


class _SkeletonPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    thesis: str = ""
    outline: List[str] = Field(default_factory=list)
    key_terms: Dict[str, str] = Field(default_factory=dict, alias="keyTerms")
    commitments: List[str] = Field(default_factory=list)
    entities: List[str] = Field(default_factory=list)

    @field_validator("outline", "commitments", "entities", mode="before")
    @classmethod
    def _coerce_strings(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, list):
            return [str(item).strip() for item in value if str(item).strip()]
        return value

    @field_validator("key_terms", mode="before")
    @classmethod
    def _coerce_terms(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, dict):
            return {str(key).strip(): str(definition).strip() for key, definition in value.items() if str(key).strip()}
        return value


def format_source_digest(content: ContentBundle, config: CoherenceConfig | None = None) -> SourceDigest:
    """Bound ``content`` per kind and render it as citation-coded lines."""

    config = config or CoherenceConfig()
    bounded = content.bounded(
        positions=config.max_positions,
        quotes=config.max_quotes,
        arguments=config.max_arguments,
        works=config.max_work_excerpts,
    )
    return SourceDigest(
        positions=tuple(f"[P{idx}] {item.text}" for idx, item in enumerate(bounded.positions, start=1)),
        quotes=tuple(f'[Q{idx}] "{item.text}"' for idx, item in enumerate(bounded.quotes, start=1)),
        arguments=tuple(f"[A{idx}] {item.text}" for idx, item in enumerate(bounded.arguments, start=1)),
        works=tuple(
            f"[W{idx}] {item.text[: config.excerpt_chars]}..." for idx, item in enumerate(bounded.works, start=1)
        ),
    )


def fallback_skeleton(user_prompt: str, digest: SourceDigest) -> Skeleton:
    return Skeleton(
        thesis=user_prompt.strip(),
        outline=DEFAULT_OUTLINE,
        source_digest=digest,
        fallback=True,
    )


def _first_json_object(text: str) -> dict[str, Any]:
    cursor = text.find("{")
    while cursor != -1:
        try:
            candidate, _ = _DECODER.raw_decode(text, cursor)
        except json.JSONDecodeError:
            cursor = text.find("{", cursor + 1)
            continue
        if isinstance(candidate, dict):
            return candidate
        cursor = text.find("{", cursor + 1)
    raise SkeletonParseError("Response did not contain a JSON object")


def parse_skeleton_payload(response: str, *, user_prompt: str, digest: SourceDigest) -> Skeleton:
    """Validate the first JSON object in ``response`` into a :class:`Skeleton`."""

    text = _strip_code_fence(response or "")
    if not text:
        raise SkeletonParseError("Model returned empty skeleton content")
    payload = _first_json_object(text)
    try:
        parsed = _SkeletonPayload.model_validate(payload)
    except ValidationError as exc:
        raise SkeletonParseError(f"Skeleton JSON failed validation: {exc}") from exc
    return Skeleton(
        thesis=parsed.thesis.strip() or user_prompt.strip(),
        outline=tuple(parsed.outline),
        key_terms=parsed.key_terms,
        commitments=tuple(parsed.commitments),
        entities=tuple(parsed.entities),
        source_digest=digest,
    )


class SkeletonExtractor:
    """Derive a :class:`Skeleton` from a request and bounded source content."""

    def __init__(self, generator: TextGenerator, config: CoherenceConfig | None = None) -> None:
        self.generator = generator
        self.config = config or CoherenceConfig()

    def build_prompts(self, user_prompt: str, subject_label: str, digest: SourceDigest) -> tuple[str, str]:
        system = textwrap.dedent(
            f"""
            You are a skeleton extractor. Extract the structural DNA of this request.
            Return ONLY valid JSON with this exact structure:
            {{
              "thesis": "The central claim or purpose (one sentence)",
              "outline": ["Section 1 topic", "Section 2 topic", ...],
              "keyTerms": {{"term1": "definition1", "term2": "definition2"}},
              "commitments": ["{subject_label} asserts X", "{subject_label} rejects Y"],
              "entities": ["concept1", "concept2"]
            }}
            """
        ).strip()
        source_lines = [*digest.positions, *digest.quotes, *digest.arguments, *digest.works]
        user = (
            f'Extract skeleton for a {subject_label} response to: "{user_prompt}"\n\n'
            "SOURCE CONTENT TO USE:\n"
            + ("\n".join(source_lines) if source_lines else "(none supplied)")
            + "\n\nReturn ONLY the JSON skeleton."
        )
        return system, user

    def extract(self, user_prompt: str, subject_label: str, content: ContentBundle) -> Skeleton:
        digest = format_source_digest(content, self.config)
        system, user = self.build_prompts(user_prompt, subject_label, digest)
        try:
            response = self.generator.generate(
                system,
                user,
                max_tokens=self.config.skeleton_max_tokens,
                temperature=self.config.skeleton_temperature,
            )
            skeleton = parse_skeleton_payload(response, user_prompt=user_prompt, digest=digest)
        except (ProviderError, SkeletonParseError) as exc:
            logger.warning("Skeleton extraction failed, using default skeleton: %s", exc)
            return fallback_skeleton(user_prompt, digest)

        logger.info(
            "Extracted skeleton with %d section(s), %d commitment(s), %d key term(s)",
            len(skeleton.outline),
            len(skeleton.commitments),
            len(skeleton.key_terms),
        )
        return skeleton


def _strip_code_fence(payload: str) -> str:
    stripped = payload.strip()
    if stripped.startswith("```json"):
        inner = stripped[len("```json") :].strip()
        if inner.endswith("```"):
            inner = inner[: -len("```")]
        return inner.strip()
    if stripped.startswith("```") and stripped.endswith("```"):
        return stripped[3:-3].strip()
    return stripped
