"""Deterministic generator used for testing and offline development."""

from __future__ import annotations

import json
import random
import re
from typing import Iterator

__all__ = ["MockTextGenerator"]

MIN_WORDS_PATTERN = re.compile(r"AT LEAST (\d+) words", re.IGNORECASE)
CITATION_PATTERN = re.compile(r"\[(?:P|Q|A|W)\d+\]")
SUBJECT_PATTERN = re.compile(r"for an? (.+?) response to: \"(.*)\"")

PARAGRAPH_WORDS = 60


class MockTextGenerator:
    """Offline stand-in for the chat backends.

    Skeleton prompts receive a small JSON skeleton; chunk prompts receive
    citation-led prose sized to the minimum word count stated in the prompt,
    scaled by ``fill_ratio`` so shortfalls can be simulated.
    """

    def __init__(
        self,
        *,
        model: str = "mock-latest",
        seed: int | None = None,
        fill_ratio: float = 1.0,
        fragment_words: int = 8,
    ) -> None:
        if fill_ratio <= 0:
            raise ValueError("fill_ratio must be positive")
        if fragment_words <= 0:
            raise ValueError("fragment_words must be positive")
        self.model = model
        self.fill_ratio = fill_ratio
        self.fragment_words = fragment_words
        self._rng = random.Random(seed or 0)

    def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str:
        if "skeleton extractor" in system_prompt.lower():
            return self._build_skeleton(user_prompt)
        return "".join(self.stream_text(system_prompt, user_prompt, max_tokens=max_tokens))

    def stream_text(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> Iterator[str]:
        words = self._build_prose(system_prompt, user_prompt).split(" ")
        for start in range(0, len(words), self.fragment_words):
            fragment = " ".join(words[start : start + self.fragment_words])
            yield fragment if start == 0 else " " + fragment

    def _build_skeleton(self, user_prompt: str) -> str:
        match = SUBJECT_PATTERN.search(user_prompt)
        subject = match.group(1).strip() if match else "The author"
        request = match.group(2).strip() if match else user_prompt.strip()[:120]
        payload = {
            "thesis": f"{subject} holds that {request.rstrip('?.!')} demands careful analysis.",
            "outline": [
                "Framing the question",
                "The central argument",
                "Objections and replies",
                "Implications",
            ],
            "keyTerms": {
                "reason": "the faculty by which claims are justified",
                "experience": "what is given prior to theorising",
            },
            "commitments": [
                f"{subject} asserts that reason must answer to experience",
            ],
            "entities": ["reason", "experience"],
        }
        return "Here is the skeleton:\n" + json.dumps(payload, ensure_ascii=False)

    def _build_prose(self, system_prompt: str, user_prompt: str) -> str:
        match = MIN_WORDS_PATTERN.search(system_prompt) or MIN_WORDS_PATTERN.search(user_prompt)
        minimum = int(match.group(1)) if match else 200
        target = max(1, round(minimum * self.fill_ratio))
        citations = CITATION_PATTERN.findall(system_prompt) or ["[P1]"]
        vocabulary = [
            "reason", "experience", "the argument", "careful inquiry", "a position",
            "the evidence", "clarity", "understanding", "method", "judgement",
            "the world", "our concepts", "justification", "the question", "truth",
        ]
        words: list[str] = []
        paragraph = 0
        while len(words) < target:
            words.append(citations[paragraph % len(citations)])
            paragraph += 1
            for _ in range(PARAGRAPH_WORDS - 1):
                if len(words) >= target:
                    break
                words.append(self._rng.choice(vocabulary).split(" ")[-1])
            if words:
                words[-1] = words[-1] + "."
        return " ".join(words[:target])
