"""LangChain chat provider abstraction for the coherence pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Iterator, Literal, Mapping, Protocol, Sequence, Tuple

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

try:  # pragma: no cover - import guard for optional dependency
    from langchain_openai import ChatOpenAI
except ImportError:  # pragma: no cover - gracefully degrade when dependency missing
    ChatOpenAI = None  # type: ignore[assignment]

try:  # pragma: no cover - import guard for optional dependency
    from langchain_anthropic import ChatAnthropic
except ImportError:  # pragma: no cover - gracefully degrade when dependency missing
    ChatAnthropic = None  # type: ignore[assignment]

__all__ = [
    "Backend",
    "SUPPORTED_MODELS",
    "ProviderError",
    "ProviderDependencyError",
    "GenerationTransportError",
    "ProviderSettings",
    "TextGenerator",
    "LangChainChatProvider",
    "build_provider",
    "resolve_backend",
]

Backend = Literal["openai", "anthropic"]
MessagesLike = Sequence[BaseMessage] | Sequence[Mapping[str, Any]]

DEFAULT_MODEL = "gpt-4o"
SUPPORTED_MODELS: Tuple[str, ...] = ("gpt-4o", "gpt-4o-mini", "claude-sonnet-4", "claude-haiku-4-5")
# Declared identifiers that differ from the vendor API name.
MODEL_ALIASES: dict[str, str] = {
    "claude-sonnet-4": "claude-sonnet-4-0",
}
DEFAULT_MODEL_ENVS: Tuple[str, ...] = ("LONGFORM_MODEL",)
DEFAULT_API_KEY_ENVS: dict[str, Tuple[str, ...]] = {
    "openai": ("LONGFORM_API_KEY", "OPENAI_API_KEY"),
    "anthropic": ("LONGFORM_API_KEY", "ANTHROPIC_API_KEY"),
}
DEFAULT_BASE_URL_ENVS: dict[str, Tuple[str, ...]] = {
    "openai": ("LONGFORM_BASE_URL", "OPENAI_BASE_URL"),
    "anthropic": ("LONGFORM_BASE_URL", "ANTHROPIC_BASE_URL"),
}
DEFAULT_TEMPERATURE_ENV = "LONGFORM_TEMPERATURE"
DEFAULT_MAX_TOKEN_ENV = "LONGFORM_MAX_TOKENS"


class ProviderError(RuntimeError):
    """Base error raised when interacting with a chat provider."""


class ProviderDependencyError(ProviderError):
    """Raised when required dependencies are unavailable."""


class GenerationTransportError(ProviderError):
    """Raised when a generation call fails or a stream breaks off mid-way."""


class TextGenerator(Protocol):
    """Generation capability consumed by the coherence core."""

    model: str

    def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str:
        """Return the complete response text."""

    def stream_text(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> Iterator[str]:
        """Yield response text incrementally."""


def resolve_backend(model: str) -> Backend:
    """Map a declared model identifier onto one of the two chat backends."""

    name = (model or "").strip().lower()
    if name.startswith("claude-"):
        return "anthropic"
    if name.startswith("gpt-") or (name[:1] == "o" and name[1:2].isdigit()):
        return "openai"
    raise ProviderError(
        f"Unknown model '{model}'; expected one of {', '.join(SUPPORTED_MODELS)} "
        "or another gpt-*/o*/claude-* identifier"
    )


@dataclass(slots=True)
class ProviderSettings:
    """Mutable settings bundle for a chat provider."""

    model: str = DEFAULT_MODEL
    base_url: str | None = None
    api_key: str | None = None
    temperature: float = 0.7
    max_tokens: int | None = None
    timeout: float | None = None

    @property
    def backend(self) -> Backend:
        return resolve_backend(self.model)

    @property
    def api_model(self) -> str:
        return MODEL_ALIASES.get(self.model, self.model)

    def as_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.api_model,
            "temperature": self.temperature,
        }
        if self.base_url:
            kwargs["base_url"] = self.base_url
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.max_tokens is not None:
            kwargs["max_tokens"] = self.max_tokens
        if self.timeout is not None:
            kwargs["timeout"] = self.timeout
        return kwargs


class LangChainChatProvider:
    """Thin wrapper around the LangChain OpenAI and Anthropic chat models."""

    def __init__(self, settings: ProviderSettings):
        self.settings = settings
        self._client = self._build_client(settings)

    def _build_client(self, settings: ProviderSettings):
        backend = settings.backend
        client_cls = ChatOpenAI if backend == "openai" else ChatAnthropic
        if client_cls is None:
            package = "langchain-openai" if backend == "openai" else "langchain-anthropic"
            raise ProviderDependencyError(f"{package} is required for model '{settings.model}'")
        try:
            return client_cls(**settings.as_kwargs())  # type: ignore[arg-type]
        except Exception as exc:  # pragma: no cover - passthrough
            raise ProviderError(f"Failed to initialise chat model '{settings.model}': {exc}") from exc

    @property
    def model(self) -> str:
        return self.settings.model

    @property
    def backend(self) -> Backend:
        return self.settings.backend

    def invoke(self, messages: MessagesLike, **kwargs: Any) -> Any:
        try:
            return self._client.invoke(messages, **kwargs)
        except Exception as exc:
            raise GenerationTransportError(f"Invocation failed for model '{self.settings.model}': {exc}") from exc

    def stream(self, messages: MessagesLike, **kwargs: Any) -> Iterator[Any]:
        try:
            for chunk in self._client.stream(messages, **kwargs):
                yield chunk
        except Exception as exc:
            raise GenerationTransportError(f"Streaming failed for model '{self.settings.model}': {exc}") from exc

    def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str:
        response = self.invoke(
            _build_messages(system_prompt, user_prompt),
            **self._call_kwargs(max_tokens, temperature),
        )
        return _extract_text(response)

    def stream_text(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> Iterator[str]:
        messages = _build_messages(system_prompt, user_prompt)
        for chunk in self.stream(messages, **self._call_kwargs(max_tokens, temperature)):
            text = _extract_text(chunk)
            if text:
                yield text

    def _call_kwargs(self, max_tokens: int | None, temperature: float | None) -> dict[str, Any]:
        kwargs: dict[str, Any] = {}
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens
        if temperature is not None:
            kwargs["temperature"] = temperature
        return kwargs


def _build_messages(system_prompt: str, user_prompt: str) -> list[BaseMessage]:
    return [SystemMessage(content=system_prompt), HumanMessage(content=user_prompt)]


def _extract_text(response: Any) -> str:
    content = getattr(response, "content", response)
    if isinstance(content, list):
        pieces: list[str] = []
        for segment in content:
            if isinstance(segment, dict):
                pieces.append(str(segment.get("text", "")))
            elif isinstance(segment, str):
                pieces.append(segment)
        return "".join(pieces)
    if content is None:
        return ""
    return str(content)


def build_provider(
    *,
    model: str | None = None,
    model_envs: Sequence[str] | None = None,
    base_url: str | None = None,
    api_key: str | None = None,
    temperature: float | None = None,
    max_tokens: int | None = None,
    timeout: float | None = None,
    api_key_envs: Sequence[str] | None = None,
    base_url_envs: Sequence[str] | None = None,
) -> LangChainChatProvider:
    """Factory that mirrors CLI/env resolution for provider credentials."""

    model_env_value = _resolve_from_env(model_envs or DEFAULT_MODEL_ENVS)
    resolved_model = model or model_env_value or DEFAULT_MODEL
    backend = resolve_backend(resolved_model)
    resolved_base_url = base_url or _resolve_from_env(base_url_envs or DEFAULT_BASE_URL_ENVS[backend])
    resolved_api_key = api_key or _resolve_from_env(api_key_envs or DEFAULT_API_KEY_ENVS[backend])

    resolved_temperature = _coerce_float(temperature, os.getenv(DEFAULT_TEMPERATURE_ENV), default=0.7)
    resolved_max_tokens = _coerce_int(max_tokens, os.getenv(DEFAULT_MAX_TOKEN_ENV))

    settings = ProviderSettings(
        model=resolved_model,
        base_url=resolved_base_url,
        api_key=resolved_api_key,
        temperature=resolved_temperature,
        max_tokens=resolved_max_tokens,
        timeout=timeout,
    )
    return LangChainChatProvider(settings)


def _resolve_from_env(envs: Sequence[str]) -> str | None:
    for env_name in envs:
        value = os.getenv(env_name)
        if value:
            return value
    return None


def _coerce_float(explicit: float | None, env_value: str | None, *, default: float) -> float:
    if explicit is not None:
        return explicit
    if env_value is None:
        return default
    try:
        return float(env_value)
    except ValueError:  # pragma: no cover - malformed env value
        return default


def _coerce_int(explicit: int | None, env_value: str | None) -> int | None:
    if explicit is not None:
        return explicit
    if env_value is None:
        return None
    try:
        return int(env_value)
    except ValueError:  # pragma: no cover - malformed env value
        return None
