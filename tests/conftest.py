"""Shared fixtures for the test suite."""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator, Sequence

import pytest
from langchain_core.messages import AIMessage, AIMessageChunk

from longform.coherence.store import InMemorySessionStore
from longform.config import CoherenceConfig
from longform.llm.providers import GenerationTransportError

ENV_VARS = {
    "LONGFORM_MODEL",
    "LONGFORM_API_KEY",
    "LONGFORM_API_KEY_ENV",
    "LONGFORM_BASE_URL",
    "LONGFORM_TEMPERATURE",
    "LONGFORM_MAX_TOKENS",
    "LONGFORM_WORDS_PER_CHUNK",
    "LONGFORM_CHUNK_DELAY",
    "LONGFORM_SHORTFALL_RATIO",
    "LONGFORM_ENHANCED",
    "LONGFORM_PROVIDER",
    "LONGFORM_LOG_LEVEL",
    "OPENAI_API_KEY",
    "OPENAI_BASE_URL",
    "ANTHROPIC_API_KEY",
    "ANTHROPIC_BASE_URL",
}

SKELETON_PAYLOAD = {
    "thesis": "Reason can only know what experience supplies.",
    "outline": ["The limits of reason", "Experience as ground", "Consequences"],
    "keyTerms": {
        "reason": "the faculty of principles",
        "experience": "sensible intuition ordered by concepts",
    },
    "commitments": ["Kant asserts that knowledge begins with experience"],
    "entities": ["reason", "experience"],
}


@pytest.fixture(autouse=True)
def _clear_llm_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure LLM-related environment variables do not leak between tests."""

    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def dummy_chat_model(monkeypatch: pytest.MonkeyPatch):
    """Patch both LangChain chat clients used by the provider abstraction."""

    from longform.llm import providers

    class DummyChatModel:
        reply = "dummy reply"
        fail_with: Exception | None = None

        def __init__(self, **kwargs: Any) -> None:
            self.kwargs = kwargs
            self.invocations: list[tuple[str, tuple[Iterable[Any], dict[str, Any]]]] = []

        def invoke(self, messages: Iterable[Any], **kwargs: Any) -> AIMessage:
            self.invocations.append(("invoke", (tuple(messages), dict(kwargs))))
            if self.fail_with is not None:
                raise self.fail_with
            return AIMessage(content=self.reply)

        def stream(self, messages: Iterable[Any], **kwargs: Any):
            self.invocations.append(("stream", (tuple(messages), dict(kwargs))))
            for word in self.reply.split(" "):
                yield AIMessageChunk(content=word + " ")
            if self.fail_with is not None:
                raise self.fail_with

    monkeypatch.setattr(providers, "ChatOpenAI", DummyChatModel)
    monkeypatch.setattr(providers, "ChatAnthropic", DummyChatModel)
    return DummyChatModel


@dataclass
class BrokenStream:
    """Chunk script that yields ``text`` and then fails mid-stream."""

    text: str
    error: Exception


class ScriptedGenerator:
    """In-memory ``TextGenerator`` replaying scripted responses."""

    def __init__(
        self,
        chunks: Sequence[str | Exception | BrokenStream] = (),
        *,
        skeleton: str | Exception | None = None,
        fragment_words: int = 7,
        model: str = "scripted",
    ) -> None:
        self.model = model
        self.skeleton = "Skeleton follows:\n" + json.dumps(SKELETON_PAYLOAD) if skeleton is None else skeleton
        self.chunks = list(chunks)
        self.fragment_words = fragment_words
        self.calls: list[dict[str, Any]] = []

    def generate(self, system_prompt: str, user_prompt: str, *, max_tokens=None, temperature=None) -> str:
        self.calls.append(
            {"kind": "generate", "system": system_prompt, "user": user_prompt, "max_tokens": max_tokens, "temperature": temperature}
        )
        if isinstance(self.skeleton, Exception):
            raise self.skeleton
        return self.skeleton

    def stream_text(self, system_prompt: str, user_prompt: str, *, max_tokens=None, temperature=None) -> Iterator[str]:
        self.calls.append(
            {"kind": "stream", "system": system_prompt, "user": user_prompt, "max_tokens": max_tokens, "temperature": temperature}
        )
        if not self.chunks:
            raise AssertionError("No scripted chunk left")
        script = self.chunks.pop(0)
        if isinstance(script, Exception):
            raise script
        text = script.text if isinstance(script, BrokenStream) else script
        words = text.split(" ")
        for start in range(0, len(words), self.fragment_words):
            piece = " ".join(words[start : start + self.fragment_words])
            yield piece if start == 0 else " " + piece
        if isinstance(script, BrokenStream):
            raise script.error

    @property
    def stream_calls(self) -> list[dict[str, Any]]:
        return [call for call in self.calls if call["kind"] == "stream"]


@pytest.fixture
def scripted_generator() -> type[ScriptedGenerator]:
    return ScriptedGenerator


@pytest.fixture
def broken_stream() -> type[BrokenStream]:
    return BrokenStream


@pytest.fixture
def transport_error() -> Callable[[str], GenerationTransportError]:
    return GenerationTransportError


@pytest.fixture
def prose() -> Callable[..., str]:
    """Build chunk text with exactly ``words`` whitespace-delimited words."""

    def _build(words: int, *, lead: str = "") -> str:
        lead_words = lead.split()
        filler = ["plain"] * max(0, words - len(lead_words))
        return " ".join(lead_words + filler)

    return _build


@pytest.fixture
def memory_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def fast_config() -> CoherenceConfig:
    return CoherenceConfig(chunk_delay_seconds=0.01)


@pytest.fixture
def sleeps() -> list[float]:
    return []
