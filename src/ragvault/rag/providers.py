"""Closed set of LLM providers and their streamed-chunk decoders.

Every supported provider speaks the OpenAI-compatible chat completions
stream: each ``data:`` payload is a JSON chunk whose incremental text lives
at ``choices[0].delta.content``. Providers differ in endpoint and default
model, and each gets its own decoder so a provider with a different chunk
shape only needs a new ``ChunkDecoder``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from ragvault.errors import DecodeError, ValidationError


class Provider(str, Enum):
    GROQ = "groq"
    OPENAI = "openai"
    MISTRAL = "mistral"


class ChunkDecoder(Protocol):
    def decode(self, payload: str) -> str:
        """Return the text fragment carried by one ``data:`` payload."""
        ...


class ChatCompletionChunkDecoder:
    """Decoder for ``{"choices": [{"delta": {"content": ...}}]}`` chunks."""

    def decode(self, payload: str) -> str:
        try:
            chunk = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise DecodeError(f"Error parsing chunk: {exc.msg} in {payload[:80]!r}") from exc
        if not isinstance(chunk, dict):
            raise DecodeError(f"Expected a JSON object chunk, got {type(chunk).__name__}")

        choices = chunk.get("choices") or []
        if not isinstance(choices, list):
            raise DecodeError("Chunk field 'choices' is not a list")
        if not choices:
            return ""
        first: Any = choices[0]
        delta = first.get("delta") if isinstance(first, dict) else None
        if delta is None:
            return ""
        if not isinstance(delta, dict):
            raise DecodeError("Chunk field 'choices[0].delta' is not an object")
        content = delta.get("content")
        if content is None:
            return ""
        if not isinstance(content, str):
            raise DecodeError("Chunk field 'choices[0].delta.content' is not a string")
        return content


@dataclass(frozen=True)
class ProviderSpec:
    endpoint: str
    model: str
    decoder: ChunkDecoder


_PROVIDERS: dict[Provider, ProviderSpec] = {
    Provider.GROQ: ProviderSpec(
        endpoint="https://api.groq.com/openai/v1/chat/completions",
        model="llama-3.3-70b-versatile",
        decoder=ChatCompletionChunkDecoder(),
    ),
    Provider.OPENAI: ProviderSpec(
        endpoint="https://api.openai.com/v1/chat/completions",
        model="gpt-4o-mini",
        decoder=ChatCompletionChunkDecoder(),
    ),
    Provider.MISTRAL: ProviderSpec(
        endpoint="https://api.mistral.ai/v1/chat/completions",
        model="mistral-small-latest",
        decoder=ChatCompletionChunkDecoder(),
    ),
}


def parse_provider(name: str | Provider) -> Provider:
    """Case-insensitive provider lookup.

    Raises:
        ValidationError: Unsupported provider name.
    """
    if isinstance(name, Provider):
        return name
    try:
        return Provider(name.strip().lower())
    except ValueError:
        supported = ", ".join(p.value for p in Provider)
        raise ValidationError(
            f"Invalid provider {name!r}. Supported providers are: {supported}"
        ) from None


def provider_spec(provider: Provider) -> ProviderSpec:
    return _PROVIDERS[provider]
