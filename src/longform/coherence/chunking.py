"""Chunk planning, prompt assembly and streamed chunk generation."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterator, Sequence

from ..config import CoherenceConfig
from ..llm.providers import TextGenerator
from .schema import Delta, Skeleton

__all__ = [
    "ChunkGenerator",
    "ChunkPromptBuilder",
    "ContinuityRollup",
    "DigestSlice",
    "count_words",
    "minimum_words",
    "plan_chunk_count",
    "plan_chunk_targets",
]

logger = logging.getLogger(__name__)


def count_words(text: str) -> int:
    return len(text.split())


def plan_chunk_count(target_words: int, words_per_chunk: int) -> int:
    if target_words <= 0:
        raise ValueError("target_words must be positive")
    if words_per_chunk <= 0:
        raise ValueError("words_per_chunk must be positive")
    return max(1, math.ceil(target_words / words_per_chunk))


def plan_chunk_targets(target_words: int, words_per_chunk: int) -> list[int]:
    """Split ``target_words`` into per-chunk targets that sum back to it exactly."""

    count = plan_chunk_count(target_words, words_per_chunk)
    base, remainder = divmod(target_words, count)
    return [base + 1 if idx < remainder else base for idx in range(count)]


def minimum_words(target_words: int, buffer_ratio: float = 1.2) -> int:
    return math.ceil(target_words * buffer_ratio)


@dataclass(frozen=True, slots=True)
class DigestSlice:
    positions: int
    quotes: int
    arguments: int
    works: int


STANDARD_SLICE = DigestSlice(positions=10, quotes=10, arguments=5, works=3)
ENHANCED_SLICE = DigestSlice(positions=8, quotes=6, arguments=4, works=2)


@dataclass(frozen=True, slots=True)
class ContinuityRollup:
    """Bounded summary of every prior delta."""

    claims: tuple[str, ...]
    terms: tuple[str, ...]

    @classmethod
    def from_deltas(cls, deltas: Sequence[Delta], skeleton: Skeleton, *, claim_limit: int) -> "ContinuityRollup":
        claims = [claim for delta in deltas for claim in delta.claims_added]
        seen = {term for delta in deltas for term in delta.terms_used}
        terms = tuple(term for term in skeleton.key_terms if term in seen)
        return cls(claims=tuple(claims[-claim_limit:]) if claim_limit > 0 else (), terms=terms)

    def is_empty(self) -> bool:
        return not self.claims and not self.terms


class ChunkPromptBuilder:
    """Render the system and user prompts for one chunk."""

    def __init__(self, config: CoherenceConfig | None = None) -> None:
        self.config = config or CoherenceConfig()

    def build(
        self,
        skeleton: Skeleton,
        chunk_index: int,
        total_chunks: int,
        target_words: int,
        subject_label: str,
        prior_deltas: Sequence[Delta] = (),
        *,
        enhanced: bool | None = None,
    ) -> tuple[str, str]:
        enhanced = self.config.enhanced if enhanced is None else enhanced
        min_words = minimum_words(target_words, self.config.word_buffer_ratio)
        rollup = ContinuityRollup.from_deltas(prior_deltas, skeleton, claim_limit=self.config.prior_claims_limit)
        section = skeleton.section_for(chunk_index)
        if enhanced:
            system = self._enhanced_system(skeleton, subject_label, min_words, rollup)
            user = (
                f'CHUNK {chunk_index + 1} OF {total_chunks}: "{section}"\n\n'
                f"Write AT LEAST {min_words} words of dense, creative content.\n\n"
                "Use the source content as SCAFFOLDING (1 part) but add extensive creative elaboration (3 parts):\n"
                "- Historical connections to other thinkers and movements\n"
                "- Scientific analogies and parallels\n"
                "- Concrete examples and thought experiments\n"
                "- Extended analysis with original insights\n\n"
                "Cite source items with [P#], [Q#], [A#], [W#] codes, then elaborate on each point.\n\n"
                f"BEGIN WRITING NOW. No preamble. {min_words}+ words required."
            )
        else:
            system = self._standard_system(skeleton, subject_label, min_words, rollup)
            user = (
                f"Chunk {chunk_index + 1} of {total_chunks}: {section}\n"
                f"Write AT LEAST {min_words} words with source citations."
            )
        return system, user

    # Templates ----------------------------------------------------------------

    def _standard_system(self, skeleton: Skeleton, subject_label: str, min_words: int, rollup: ContinuityRollup) -> str:
        lines = [
            f"You are {subject_label}. Write strictly source-grounded content.",
            "",
            f"WORD COUNT: AT LEAST {min_words} words.",
            "",
            "SOURCE CONTENT TO CITE (prefix paragraphs with codes):",
            *_digest_lines(skeleton, STANDARD_SLICE),
            "",
            *_contract_lines(skeleton),
            *_continuity_lines(rollup),
            "",
            "RULES:",
            "1. Start paragraphs with citations [P#], [Q#], [A#], [W#]",
            f"2. Write AT LEAST {min_words} words",
            "3. Do NOT contradict the thesis or any commitment",
            "4. No markdown, headings or lists. Plain paragraphs only",
        ]
        return "\n".join(lines)

    def _enhanced_system(self, skeleton: Skeleton, subject_label: str, min_words: int, rollup: ContinuityRollup) -> str:
        lines = [
            f"You are {subject_label}, writing an extended essay. This is ENHANCED MODE.",
            "",
            f"CRITICAL WORD COUNT: You MUST write AT LEAST {min_words} words.",
            "",
            "THE 1:3 RATIO:",
            "- 1 PART: source content as SCAFFOLDING (anchor points and citations)",
            "- 3 PARTS: creative elaboration with historical context, scientific parallels,",
            "  concrete examples, thought experiments, counter-arguments and replies",
            "",
            "SOURCE SCAFFOLDING (cite with [P#], [Q#], [A#], [W#] and elaborate):",
            *_digest_lines(skeleton, ENHANCED_SLICE),
            "",
            *_contract_lines(skeleton),
            *_continuity_lines(rollup),
            "",
            "WRITING STYLE:",
            "- Write for an educated general audience",
            "- Open each paragraph with a citation code",
            "- No markdown, headings or lists. Pure flowing prose",
            "- No meta-commentary about what you are doing",
            "",
            f"REMEMBER: {min_words} WORDS MINIMUM.",
        ]
        return "\n".join(lines)


def _digest_lines(skeleton: Skeleton, limits: DigestSlice) -> list[str]:
    digest = skeleton.source_digest
    lines = [
        *digest.positions[: limits.positions],
        *digest.quotes[: limits.quotes],
        *digest.arguments[: limits.arguments],
        *digest.works[: limits.works],
    ]
    return lines or ["(no source items; argue from the thesis and commitments)"]


def _contract_lines(skeleton: Skeleton) -> list[str]:
    lines = [f"THESIS (must not contradict): {skeleton.thesis}"]
    if skeleton.commitments:
        lines.append("COMMITMENTS (must not contradict):")
        lines.extend(f"- {commitment}" for commitment in skeleton.commitments)
    if skeleton.key_terms:
        lines.append("KEY TERMS (use with these meanings):")
        lines.extend(f"- {term}: {definition}" for term, definition in skeleton.key_terms.items())
    return lines


def _continuity_lines(rollup: ContinuityRollup) -> list[str]:
    if rollup.is_empty():
        return []
    lines = [""]
    if rollup.claims:
        lines.append("CONTINUITY - claims already made (build on them, do not repeat or contradict):")
        lines.extend(f"- {claim}" for claim in rollup.claims)
    if rollup.terms:
        lines.append(f"Terms already introduced: {', '.join(rollup.terms)}")
    return lines


class ChunkGenerator:
    """Stream one chunk of prose from the generation operation."""

    def __init__(
        self,
        generator: TextGenerator,
        config: CoherenceConfig | None = None,
        *,
        prompt_builder: ChunkPromptBuilder | None = None,
    ) -> None:
        self.generator = generator
        self.config = config or CoherenceConfig()
        self.prompt_builder = prompt_builder or ChunkPromptBuilder(self.config)

    def generate(
        self,
        skeleton: Skeleton,
        chunk_index: int,
        total_chunks: int,
        target_words: int,
        subject_label: str,
        prior_deltas: Sequence[Delta] = (),
        *,
        enhanced: bool | None = None,
    ) -> Iterator[str]:
        system, user = self.prompt_builder.build(
            skeleton,
            chunk_index,
            total_chunks,
            target_words,
            subject_label,
            prior_deltas,
            enhanced=enhanced,
        )
        logger.debug(
            "Generating chunk %d/%d (target %d words, prompt %d chars)",
            chunk_index + 1,
            total_chunks,
            target_words,
            len(system) + len(user),
        )
        yield from self.generator.stream_text(
            system,
            user,
            max_tokens=self.config.chunk_max_tokens,
            temperature=self.config.chunk_temperature,
        )
