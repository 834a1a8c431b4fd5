"""
Text generators for plan synthesis and task analysis.

A backend turns ``(system prompt, user prompt, max tokens, temperature)``
into raw text. Nothing about the shape of that text is trusted: every
consumer runs it through :func:`app.utils.llm_json.extract_json` and the
pydantic schemas, and falls back to deterministic output on failure.

Each provider only supplies two hooks, ``_connect`` (build the SDK client)
and ``_complete`` (one request). Client construction is lazy and happens
on the first availability check, so a missing SDK or key shows up as an
unavailable backend, never as an import error.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

JSON_ONLY_SUFFIX = "\n\nRespond ONLY with valid JSON, no markdown fences."

DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "anthropic": "claude-3-5-haiku-latest",
}


@dataclass
class LLMResponse:
    text: str
    model: str
    usage: dict[str, int] = field(default_factory=dict)
    latency_ms: float = 0.0


class LLMBackend(ABC):
    """Base text generator: lazy client, timing and error logging."""

    name = "base"

    def __init__(self, api_key: str = "", model: str = "", *, timeout: int = 60) -> None:
        self._api_key = api_key
        self._model = model or DEFAULT_MODELS.get(self.name, "")
        self._timeout = timeout
        self._client: Any = None
        self._failed = False

    @property
    def model(self) -> str:
        return self._model

    @property
    def is_available(self) -> bool:
        if self._client is None and not self._failed:
            self.initialize()
        return self._client is not None

    def initialize(self) -> bool:
        """Build the SDK client once. A failure is remembered and not retried."""
        if self._client is not None:
            return True
        if not self._api_key:
            logger.warning("%s backend: no API key configured", self.name)
            self._failed = True
            return False
        try:
            self._client = self._connect()
        except ImportError:
            logger.error("%s backend: SDK package not installed (pip install %s)", self.name, self.name)
            self._failed = True
        except Exception as exc:
            logger.error("%s backend init failed: %s", self.name, exc)
            self._failed = True
        else:
            logger.info("%s backend ready (model=%s)", self.name, self._model)
        return self._client is not None

    def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        max_tokens: int = 2048,
        temperature: float = 0.7,
        json_mode: bool = False,
    ) -> LLMResponse:
        """One completion. SDK errors propagate to the caller's fallback path."""
        if not self.is_available:
            raise RuntimeError(f"{self.name} backend not initialised")
        started = time.perf_counter()
        text, model, usage = self._complete(system_prompt, user_prompt, max_tokens, temperature, json_mode)
        latency = (time.perf_counter() - started) * 1000
        logger.debug("%s completion in %.0fms (%s tokens)", self.name, latency, usage.get("total_tokens", "?"))
        return LLMResponse(text=text or "", model=model or self._model, usage=usage, latency_ms=latency)

    def generate_text(self, prompt: str, max_tokens: int = 2048, temperature: float = 0.7) -> str:
        return self.generate("", prompt, max_tokens=max_tokens, temperature=temperature).text

    @abstractmethod
    def _connect(self) -> Any:
        """Return a ready SDK client. May raise ImportError."""

    @abstractmethod
    def _complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
        json_mode: bool,
    ) -> tuple[str, str, dict[str, int]]:
        """Return ``(text, model, usage)`` for one request."""


class OpenAIBackend(LLMBackend):
    """Chat Completions, including compatible endpoints via ``base_url``."""

    name = "openai"

    def __init__(self, api_key: str = "", model: str = "", *, base_url: str | None = None, timeout: int = 60) -> None:
        super().__init__(api_key, model, timeout=timeout)
        self._base_url = base_url

    def _connect(self) -> Any:
        import openai

        return openai.OpenAI(api_key=self._api_key, base_url=self._base_url, timeout=self._timeout)

    def _complete(self, system_prompt, user_prompt, max_tokens, temperature, json_mode):
        messages = [{"role": "user", "content": user_prompt}]
        if system_prompt:
            messages.insert(0, {"role": "system", "content": system_prompt})
        extra = {"response_format": {"type": "json_object"}} if json_mode else {}
        response = self._client.chat.completions.create(
            model=self._model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
            **extra,
        )
        usage = {}
        if response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }
        return response.choices[0].message.content or "", response.model, usage


class AnthropicBackend(LLMBackend):
    """Messages API. JSON mode is requested through the prompt."""

    name = "anthropic"

    def _connect(self) -> Any:
        import anthropic

        return anthropic.Anthropic(api_key=self._api_key, timeout=self._timeout)

    def _complete(self, system_prompt, user_prompt, max_tokens, temperature, json_mode):
        request: dict[str, Any] = {
            "model": self._model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": user_prompt + (JSON_ONLY_SUFFIX if json_mode else "")}],
        }
        if system_prompt:
            request["system"] = system_prompt
        response = self._client.messages.create(**request)
        text = "".join(getattr(block, "text", "") for block in response.content or [])
        usage = {}
        if response.usage:
            usage = {
                "prompt_tokens": response.usage.input_tokens,
                "completion_tokens": response.usage.output_tokens,
                "total_tokens": response.usage.input_tokens + response.usage.output_tokens,
            }
        return text, response.model, usage


_BACKENDS: dict[str, type[LLMBackend]] = {
    OpenAIBackend.name: OpenAIBackend,
    AnthropicBackend.name: AnthropicBackend,
}


def create_backend(
    provider: str,
    *,
    api_key: str = "",
    model: str = "",
    base_url: str | None = None,
    timeout: int = 60,
) -> LLMBackend | None:
    """
    Backend for *provider*, or ``None`` for ``"none"``, an unknown name or
    a backend that cannot start. ``None`` sends every plan down the
    rule-based path.
    """
    provider = (provider or "").strip().lower()
    if provider in ("", "none"):
        logger.info("No text generator configured; plans will be rule-based")
        return None

    backend_cls = _BACKENDS.get(provider)
    if backend_cls is None:
        logger.error("Unknown LLM provider '%s'", provider)
        return None

    kwargs: dict[str, Any] = {"timeout": timeout}
    if base_url and backend_cls is OpenAIBackend:
        kwargs["base_url"] = base_url
    backend = backend_cls(api_key, model, **kwargs)
    if not backend.initialize():
        logger.warning("LLM backend '%s' unavailable; plans will be rule-based", provider)
        return None
    return backend
