"""Streaming chat-completion client for the configured LLM provider.

One POST per generation with ``{messages, model, temperature, stream: true}``
and a bearer token. The response is read as a line-oriented event stream:

  - blank lines and lines without the ``data: `` prefix are skipped
  - ``data: [DONE]`` ends the stream and is never parsed
  - every other payload is decoded by the provider's decoder and the text
    fragment is written to the sink immediately, in arrival order

Any HTTP error, decode error, or sink write error aborts the generation.
There is no mid-stream retry: callers restart from scratch. Content already
written to the sink before a failure stays there.
"""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass
from enum import Enum
from typing import Generator, Protocol, Sequence

import httpx
import structlog

from ragvault.errors import DependencyError, ValidationError
from ragvault.rag.providers import Provider, parse_provider, provider_spec

log = structlog.get_logger(__name__)

EVENT_PREFIX = "data: "
DONE_MARKER = "[DONE]"


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class Message:
    role: Role | str
    content: str

    def to_dict(self) -> dict[str, str]:
        role = self.role.value if isinstance(self.role, Role) else self.role
        return {"role": role, "content": self.content}


class Sink(Protocol):
    def write(self, text: str, /) -> object: ...


@dataclass
class LLMConfig:
    """Every recognised LLM option with its default.

    Attributes:
        provider: One of the supported providers (groq, openai, mistral).
        token: Bearer token for the provider API (required).
        model: Model name; None selects the provider default.
        endpoint: Chat completions URL; None selects the provider default.
        temperature: Sampling temperature, 0 to 2.
        timeout: Seconds for connect/read of the HTTP stream.
    """

    provider: Provider | str = Provider.GROQ
    token: str = ""
    model: str | None = None
    endpoint: str | None = None
    temperature: float = 0.2
    timeout: float = 60.0

    def validate(self) -> "LLMConfig":
        """Normalise the provider and check every value.

        Raises:
            ValidationError: Unknown provider, missing token, bad temperature
                or timeout.
        """
        self.provider = parse_provider(self.provider)
        if not self.token:
            raise ValidationError("LLM token must not be empty")
        if not 0.0 <= self.temperature <= 2.0:
            raise ValidationError(
                f"temperature must be between 0 and 2, got {self.temperature}"
            )
        if self.timeout <= 0:
            raise ValidationError(f"timeout must be > 0, got {self.timeout}")
        return self


class LLMClient:
    """Provider-agnostic streaming generation.

    The provider variant (endpoint, default model, chunk decoder) is chosen
    once at construction; everything after that is shared.

    Args:
        config: Validated on construction.
        http_client: Optional pre-built ``httpx.Client`` (tests inject one
            with a ``MockTransport``). Owned by the caller when given.
    """

    def __init__(self, config: LLMConfig, http_client: httpx.Client | None = None) -> None:
        self._config = config.validate()
        spec = provider_spec(self._config.provider)
        self.provider: Provider = self._config.provider
        self.model = self._config.model or spec.model
        self.endpoint = self._config.endpoint or spec.endpoint
        self._decoder = spec.decoder
        self._owns_client = http_client is None
        self._http = http_client or httpx.Client(timeout=self._config.timeout)

    def close(self) -> None:
        if self._owns_client:
            self._http.close()

    def __enter__(self) -> "LLMClient":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def generate(self, messages: Sequence[Message], sink: Sink) -> int:
        """Stream the answer for *messages* into *sink*.

        Returns:
            Number of characters written.

        Raises:
            ValidationError: Empty message list or unknown role (nothing written).
            DependencyError: HTTP failure or sink write failure.
            DecodeError: Malformed chunk.
        """
        written = 0
        with closing(self.stream(messages)) as fragments:
            for fragment in fragments:
                try:
                    sink.write(fragment)
                except Exception as exc:
                    raise DependencyError(f"Error writing to output: {exc}") from exc
                written += len(fragment)
        return written

    def stream(self, messages: Sequence[Message]) -> Generator[str, None, None]:
        """Yield text fragments as they arrive. Validation happens eagerly."""
        payload = self._build_payload(messages)
        return self._stream(payload)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _build_payload(self, messages: Sequence[Message]) -> dict[str, object]:
        if not messages:
            raise ValidationError("Messages cannot be empty.")
        valid_roles = {r.value for r in Role}
        body = []
        for message in messages:
            item = message.to_dict()
            if item["role"] not in valid_roles:
                raise ValidationError(
                    f"Invalid message role {item['role']!r}; "
                    f"expected one of {', '.join(sorted(valid_roles))}"
                )
            body.append(item)
        return {
            "messages": body,
            "model": self.model,
            "temperature": self._config.temperature,
            "stream": True,
        }

    def _stream(self, payload: dict[str, object]) -> Generator[str, None, None]:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._config.token}",
        }
        try:
            with self._http.stream("POST", self.endpoint, json=payload, headers=headers) as response:
                if response.status_code != httpx.codes.OK:
                    body = response.read().decode("utf-8", errors="replace")[:200]
                    log.warning(
                        "llm_request_failed",
                        provider=self.provider.value,
                        status=response.status_code,
                    )
                    raise DependencyError(
                        f"{self.provider.value} request failed with status: "
                        f"{response.status_code} {body}".rstrip()
                    )
                for raw in response.iter_lines():
                    line = raw.strip()
                    if not line or not line.startswith(EVENT_PREFIX):
                        continue
                    data = line[len(EVENT_PREFIX):].strip()
                    if data == DONE_MARKER:
                        return
                    fragment = self._decoder.decode(data)
                    if fragment:
                        yield fragment
        except httpx.HTTPError as exc:
            log.warning("llm_stream_error", provider=self.provider.value, error=str(exc))
            raise DependencyError(f"Error reading stream: {exc}") from exc
