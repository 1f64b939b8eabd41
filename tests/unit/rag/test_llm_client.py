"""Tests for the streaming chat-completion client."""

from __future__ import annotations

import io
import json

import httpx
import pytest

from ragvault.errors import DecodeError, DependencyError, ValidationError
from ragvault.rag.llm_client import LLMClient, LLMConfig, Message, Role
from ragvault.rag.providers import Provider


def _event(content: str) -> str:
    return "data: " + json.dumps({"choices": [{"delta": {"content": content}}]})


def _stream_body(*lines: str) -> bytes:
    return ("\n".join(lines) + "\n").encode("utf-8")


def _client(handler, **config) -> LLMClient:
    config.setdefault("token", "test-token")
    http = httpx.Client(transport=httpx.MockTransport(handler))
    return LLMClient(LLMConfig(**config), http_client=http)


def _messages() -> list[Message]:
    return [
        Message(Role.SYSTEM, "You answer questions."),
        Message(Role.USER, "Say hello"),
    ]


class _Recorder:
    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []

    def __call__(self, body: bytes, status: int = 200):
        def handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return httpx.Response(status, content=body)

        return handler


# ------------------------------------------------------------------
# LLMConfig
# ------------------------------------------------------------------


def test_config_normalises_provider():
    cfg = LLMConfig(provider="OpenAI", token="t").validate()
    assert cfg.provider is Provider.OPENAI


def test_config_requires_token():
    with pytest.raises(ValidationError, match="token"):
        LLMConfig(token="").validate()


@pytest.mark.parametrize("temperature", [-0.1, 2.5])
def test_config_rejects_temperature(temperature):
    with pytest.raises(ValidationError, match="temperature"):
        LLMConfig(token="t", temperature=temperature).validate()


def test_config_rejects_timeout():
    with pytest.raises(ValidationError, match="timeout"):
        LLMConfig(token="t", timeout=0).validate()


def test_provider_defaults_applied():
    client = _client(lambda r: httpx.Response(200), provider="mistral")
    assert client.endpoint == "https://api.mistral.ai/v1/chat/completions"
    assert client.model == "mistral-small-latest"


def test_explicit_model_and_endpoint_win():
    client = _client(
        lambda r: httpx.Response(200),
        model="custom-model",
        endpoint="http://localhost:8080/v1/chat/completions",
    )
    assert client.model == "custom-model"
    assert client.endpoint == "http://localhost:8080/v1/chat/completions"


# ------------------------------------------------------------------
# generate
# ------------------------------------------------------------------


def test_fragments_written_in_order_until_done():
    body = _stream_body(
        _event("Hel"),
        "",
        _event("lo"),
        "data: [DONE]",
        _event("never"),
    )
    sink = io.StringIO()
    written = _client(_Recorder()(body)).generate(_messages(), sink)
    assert sink.getvalue() == "Hello"
    assert written == 5


def test_non_event_lines_skipped():
    body = _stream_body(
        ": keep-alive",
        "event: message",
        _event("ok"),
        "data: [DONE]",
    )
    sink = io.StringIO()
    _client(_Recorder()(body)).generate(_messages(), sink)
    assert sink.getvalue() == "ok"


def test_stream_without_done_ends_at_eof():
    sink = io.StringIO()
    _client(_Recorder()(_stream_body(_event("a"), _event("b")))).generate(_messages(), sink)
    assert sink.getvalue() == "ab"


def test_request_payload_and_headers():
    recorder = _Recorder()
    client = _client(recorder(_stream_body("data: [DONE]")), temperature=0.7)
    client.generate(_messages(), io.StringIO())

    (request,) = recorder.requests
    assert request.method == "POST"
    assert str(request.url) == "https://api.groq.com/openai/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer test-token"
    assert request.headers["Content-Type"] == "application/json"
    payload = json.loads(request.content)
    assert payload == {
        "messages": [
            {"role": "system", "content": "You answer questions."},
            {"role": "user", "content": "Say hello"},
        ],
        "model": "llama-3.3-70b-versatile",
        "temperature": 0.7,
        "stream": True,
    }


def test_empty_messages_rejected_before_request():
    recorder = _Recorder()
    sink = io.StringIO()
    with pytest.raises(ValidationError, match="Messages cannot be empty"):
        _client(recorder(b"")).generate([], sink)
    assert recorder.requests == []
    assert sink.getvalue() == ""


def test_invalid_role_rejected():
    recorder = _Recorder()
    with pytest.raises(ValidationError, match="Invalid message role"):
        _client(recorder(b"")).generate([Message("tool", "x")], io.StringIO())
    assert recorder.requests == []


def test_http_error_status():
    handler = _Recorder()(b'{"error": "bad key"}', status=401)
    with pytest.raises(DependencyError, match="groq request failed with status: 401"):
        _client(handler).generate(_messages(), io.StringIO())


def test_transport_error_wrapped():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(DependencyError, match="Error reading stream"):
        _client(handler).generate(_messages(), io.StringIO())


def test_malformed_chunk_aborts_after_earlier_output():
    body = _stream_body(_event("partial "), "data: {oops", _event("lost"))
    sink = io.StringIO()
    with pytest.raises(DecodeError):
        _client(_Recorder()(body)).generate(_messages(), sink)
    assert sink.getvalue() == "partial "


def test_sink_failure_aborts():
    class BrokenSink:
        def write(self, text):
            raise OSError("broken pipe")

    body = _stream_body(_event("x"), "data: [DONE]")
    with pytest.raises(DependencyError, match="Error writing to output"):
        _client(_Recorder()(body)).generate(_messages(), BrokenSink())


def test_stream_yields_fragments():
    body = _stream_body(_event("one"), _event(""), _event("two"), "data: [DONE]")
    fragments = list(_client(_Recorder()(body)).stream(_messages()))
    assert fragments == ["one", "two"]


def test_injected_client_not_closed():
    http = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    with LLMClient(LLMConfig(token="t"), http_client=http):
        pass
    assert not http.is_closed
    http.close()
