import asyncio
import json
from types import SimpleNamespace

import httpx
import openai
import pytest

from meeting_recorder.backends import (
    AnthropicBackend,
    GeminiBackend,
    OllamaBackend,
    OpenAIBackend,
    OpenRouterBackend,
    SummaryBackend,
    build_language_instruction,
    build_system_guard,
    get_backend,
    is_invalid_transcript,
)
from meeting_recorder.config import LLMSettings
from meeting_recorder.errors import ConfigurationError, SummarizationError

TRANSCRIPT = "We reviewed the quarterly planning and agreed to move the launch to March."


class Recorder:
    """httpx handler that records requests and replies with a canned response."""

    def __init__(self, status=200, payload=None):
        self.status = status
        self.payload = payload or {}
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        return httpx.Response(self.status, json=self.payload)


def test_is_invalid_transcript():
    assert is_invalid_transcript("")
    assert is_invalid_transcript("   ")
    assert is_invalid_transcript("short text")
    assert is_invalid_transcript("1234567890 " * 10)
    assert not is_invalid_transcript(TRANSCRIPT)


def test_system_guard_names_the_language():
    assert "Italian" in build_system_guard("it")
    assert "SAME language" in build_system_guard("auto")
    assert "Use ONLY information present in the transcript" in build_system_guard("en")
    assert "italiano" in build_language_instruction("it")
    assert "English" in build_language_instruction("de")


def test_gemini_request_and_response():
    handler = Recorder(payload={"candidates": [{"content": {"parts": [{"text": " ## Notes "}, {"text": "- a"}]}}]})
    backend = GeminiBackend(model="gemini-2.5-pro", api_key="secret", transport=httpx.MockTransport(handler))

    result = asyncio.run(backend.summarize("Summarize.", TRANSCRIPT, "en"))

    assert result == "## Notes \n- a"
    request = handler.requests[0]
    assert request.url.path.endswith("/models/gemini-2.5-pro:generateContent")
    assert request.url.params["key"] == "secret"
    body = json.loads(request.content)
    assert "English" in body["systemInstruction"]["parts"][0]["text"]
    assert body["contents"][0]["parts"][0]["text"] == f"Summarize.\n\nTranscript:\n{TRANSCRIPT}"


def test_http_error_raises_summarization_error():
    handler = Recorder(status=401, payload={"error": "bad key"})
    backend = GeminiBackend(model="gemini-2.5-pro", api_key="wrong", transport=httpx.MockTransport(handler))
    with pytest.raises(SummarizationError, match="401"):
        asyncio.run(backend.summarize("Summarize.", TRANSCRIPT, "en"))


def test_invalid_transcript_makes_no_request():
    handler = Recorder()
    backend = GeminiBackend(model="m", api_key="k", transport=httpx.MockTransport(handler))
    assert asyncio.run(backend.summarize("Summarize.", "uh", "en")) == ""
    assert handler.requests == []


def test_empty_model_output_is_empty_string():
    handler = Recorder(payload={"candidates": []})
    backend = GeminiBackend(model="m", api_key="k", transport=httpx.MockTransport(handler))
    assert asyncio.run(backend.summarize("Summarize.", TRANSCRIPT, "en")) == ""


def test_anthropic_headers_and_content():
    handler = Recorder(payload={"content": [{"type": "text", "text": "## Summary"}]})
    backend = AnthropicBackend(model="claude", api_key="ak", transport=httpx.MockTransport(handler))

    assert asyncio.run(backend.summarize("Summarize.", TRANSCRIPT, "it")) == "## Summary"

    request = handler.requests[0]
    assert request.url.path == "/v1/messages"
    assert request.headers["x-api-key"] == "ak"
    assert request.headers["anthropic-version"] == "2023-06-01"
    assert "Italian" in json.loads(request.content)["system"]


def test_ollama_inlines_language_rules():
    handler = Recorder(payload={"response": "## Riassunto"})
    backend = OllamaBackend(model="qwen3:8b", endpoint="http://localhost:11434/", transport=httpx.MockTransport(handler))

    assert asyncio.run(backend.summarize("Riassumi.", TRANSCRIPT, "it")) == "## Riassunto"

    request = handler.requests[0]
    assert str(request.url) == "http://localhost:11434/api/generate"
    body = json.loads(request.content)
    assert body["prompt"].startswith("IMPORTANTE: Devi rispondere ESCLUSIVAMENTE in italiano.")
    assert body["stream"] is False


class FakeCompletions:
    def __init__(self, content):
        self.content = content
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def test_openai_backend_uses_chat_completions():
    completions = FakeCompletions(" ## Recap \n")
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    backend = OpenAIBackend(model="gpt-4o-mini", api_key="sk", client=client)

    assert asyncio.run(backend.summarize("Summarize.", TRANSCRIPT, "fr")) == "## Recap"

    messages = completions.calls[0]["messages"]
    assert messages[0]["role"] == "system"
    assert "French" in messages[0]["content"]
    assert completions.calls[0]["model"] == "gpt-4o-mini"


def test_openai_none_content_is_empty():
    client = SimpleNamespace(chat=SimpleNamespace(completions=FakeCompletions(None)))
    backend = OpenRouterBackend(model="anthropic/claude-3.5-haiku", api_key="or", client=client)
    assert asyncio.run(backend.summarize("Summarize.", TRANSCRIPT, "en")) == ""


def test_get_backend_registry():
    assert isinstance(get_backend(LLMSettings(provider="gemini", gemini_api_key="k")), GeminiBackend)
    assert isinstance(get_backend(LLMSettings(provider="ollama")), OllamaBackend)
    backend = get_backend(LLMSettings(provider="openrouter", openrouter_api_key="k"))
    assert isinstance(backend, OpenRouterBackend)
    assert backend.model == "anthropic/claude-3.5-haiku"


def test_get_backend_rejects_bad_configuration():
    with pytest.raises(ConfigurationError):
        get_backend(LLMSettings(provider="mystery"))
    with pytest.raises(ConfigurationError):
        get_backend(LLMSettings(provider="anthropic", anthropic_api_key=""))


class InvalidResponseCompletions:
    async def create(self, **kwargs):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        response = httpx.Response(200, request=request)
        raise openai.APIResponseValidationError(response, None, message="unexpected response shape")


def test_openai_unexpected_sdk_error_becomes_summarization_error():
    client = SimpleNamespace(chat=SimpleNamespace(completions=InvalidResponseCompletions()))
    backend = OpenAIBackend(model="gpt-4o-mini", api_key="sk", client=client)

    with pytest.raises(SummarizationError, match="unexpected response shape"):
        asyncio.run(backend.summarize("Summarize.", TRANSCRIPT, "en"))


def test_summary_backend_is_abstract():
    with pytest.raises(TypeError):
        SummaryBackend(model="m", api_key="k")
