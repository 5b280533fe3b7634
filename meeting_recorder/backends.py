"""Summarization backends.

Every backend takes the same inputs (scenario prompt, transcript, expected
language) and returns Markdown, or an empty string when the transcript is
not worth summarizing. Transport failures are retried; HTTP and auth errors
surface as SummarizationError.
"""
from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from typing import Dict, Optional, Type

import httpx
import openai
from openai import AsyncOpenAI
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import LLMSettings
from .errors import ConfigurationError, SummarizationError
from .language import LANGUAGE_NAMES

logger = logging.getLogger(__name__)

OPENAI_BASE_URL = 'https://api.openai.com/v1'
OPENROUTER_BASE_URL = 'https://openrouter.ai/api/v1'
GEMINI_BASE_URL = 'https://generativelanguage.googleapis.com/v1beta'
ANTHROPIC_BASE_URL = 'https://api.anthropic.com'
ANTHROPIC_VERSION = '2023-06-01'

_LETTERS = re.compile(r'[A-Za-zÀ-ÖØ-öø-ÿ]')

_transport_retry = retry(
    retry=retry_if_exception_type((httpx.TransportError, openai.APIConnectionError)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=4, max=60),
    reraise=True,
)


def is_invalid_transcript(text: str, min_chars: int = 40, min_letters: int = 30) -> bool:
    """True for empty input, very short input, or input that is mostly noise."""
    text = (text or '').strip()
    if not text:
        return True
    letters = len(_LETTERS.findall(text))
    return len(text) < min_chars or letters < min_letters


def build_system_guard(language: str) -> str:
    if language == 'auto':
        rule = 'Output MUST be in the SAME language as the transcript.'
    else:
        rule = f'Output language MUST be {LANGUAGE_NAMES.get(language, language)}.'
    return '\n'.join([
        'You are a careful summarizer that writes clean Markdown.',
        'STRICT RULES:',
        f'- {rule}',
        '- Use ONLY information present in the transcript. Do NOT invent or infer beyond it.',
        '- If the transcript is empty, invalid, or contains insufficient linguistic content, '
        'return an empty string and nothing else.',
    ])


def build_language_instruction(language: str) -> str:
    """Language rules in the target language itself, for models that ignore system prompts."""
    if language == 'it':
        return '\n'.join([
            'IMPORTANTE: Devi rispondere ESCLUSIVAMENTE in italiano.',
            "Non usare mai l'inglese. Scrivi tutto in italiano.",
            'Usa solo informazioni presenti nel transcript, non inventare nulla.',
        ])
    if language == 'es':
        return '\n'.join([
            'IMPORTANTE: Debes responder EXCLUSIVAMENTE en español.',
            'No uses nunca el inglés. Escribe todo en español.',
            'Usa solo información presente en la transcripción, no inventes nada.',
        ])
    if language == 'fr':
        return '\n'.join([
            'IMPORTANT: Vous devez répondre EXCLUSIVEMENT en français.',
            "N'utilisez jamais l'anglais. Écrivez tout en français.",
            "Utilisez uniquement les informations présentes dans la transcription, n'inventez rien.",
        ])
    return '\n'.join([
        'IMPORTANT: Respond EXCLUSIVELY in English.',
        'Use only information from the transcript, do not invent anything.',
    ])


def user_message(prompt: str, transcript: str) -> str:
    return f"{prompt}\n\nTranscript:\n{transcript}"


class SummaryBackend(ABC):
    """Common settings and the pre-flight transcript check."""

    name = ''
    needs_api_key = True

    def __init__(
        self,
        model: str,
        api_key: str = '',
        endpoint: str = '',
        temperature: float = 0.0,
        max_tokens: int = 2000,
        timeout: float = 120.0,
        min_chars: int = 40,
        min_letters: int = 30,
    ):
        if self.needs_api_key and not api_key:
            raise ConfigurationError(f"{self.name} API key not configured")
        self.model = model
        self.api_key = api_key
        self.endpoint = (endpoint or '').strip().rstrip('/')
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.min_chars = min_chars
        self.min_letters = min_letters

    async def summarize(self, prompt: str, transcript: str, language: str) -> str:
        if is_invalid_transcript(transcript, self.min_chars, self.min_letters):
            logger.info("%s: transcript rejected before the request", self.name)
            return ''
        text = await self._complete(prompt, transcript, language)
        return (text or '').strip()

    @abstractmethod
    async def _complete(self, prompt: str, transcript: str, language: str) -> str:
        """Send one request and return the raw model text."""


class OpenAIBackend(SummaryBackend):
    name = 'openai'
    default_base_url = OPENAI_BASE_URL

    def __init__(self, *args, client: Optional[AsyncOpenAI] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.client = client or AsyncOpenAI(
            api_key=self.api_key,
            base_url=self.endpoint or self.default_base_url,
            timeout=self.timeout,
            max_retries=0,
        )

    async def _complete(self, prompt: str, transcript: str, language: str) -> str:
        try:
            response = await self._create(prompt, transcript, language)
        except openai.APIStatusError as e:
            raise SummarizationError(f"{self.name} API error: {e.status_code} {e.message}") from e
        except openai.APIConnectionError as e:
            raise SummarizationError(f"{self.name} request failed: {e}") from e
        except openai.APIError as e:
            raise SummarizationError(f"{self.name} API error: {e.message}") from e
        if not response.choices:
            return ''
        return response.choices[0].message.content or ''

    @_transport_retry
    async def _create(self, prompt: str, transcript: str, language: str):
        return await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": build_system_guard(language)},
                {"role": "user", "content": user_message(prompt, transcript)},
            ],
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )


class OpenRouterBackend(OpenAIBackend):
    name = 'openrouter'
    default_base_url = OPENROUTER_BASE_URL


class HttpBackend(SummaryBackend):
    """Backends speaking plain JSON over HTTP."""

    def __init__(self, *args, transport: Optional[httpx.AsyncBaseTransport] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.transport = transport

    async def _post_json(self, url: str, body: dict, headers: Optional[dict] = None, params: Optional[dict] = None) -> dict:
        try:
            response = await self._post(url, body, headers or {}, params)
        except httpx.HTTPError as e:
            raise SummarizationError(f"{self.name} request failed: {e}") from e
        if response.status_code >= 400:
            raise SummarizationError(f"{self.name} API error: {response.status_code} {response.text[:500]}")
        try:
            return response.json()
        except ValueError as e:
            raise SummarizationError(f"{self.name} returned invalid JSON: {e}") from e

    @_transport_retry
    async def _post(self, url: str, body: dict, headers: dict, params: Optional[dict]) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            return await client.post(url, json=body, headers=headers, params=params)


class GeminiBackend(HttpBackend):
    name = 'gemini'

    async def _complete(self, prompt: str, transcript: str, language: str) -> str:
        base = self.endpoint or GEMINI_BASE_URL
        url = f"{base}/models/{self.model}:generateContent"
        body = {
            "systemInstruction": {"role": "system", "parts": [{"text": build_system_guard(language)}]},
            "contents": [{"role": "user", "parts": [{"text": user_message(prompt, transcript)}]}],
            "generationConfig": {"temperature": self.temperature, "maxOutputTokens": self.max_tokens},
        }
        data = await self._post_json(url, body, params={"key": self.api_key})
        candidates = data.get("candidates") or []
        if not candidates:
            return ''
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return '\n'.join(part.get("text", '') for part in parts)


class AnthropicBackend(HttpBackend):
    name = 'anthropic'

    async def _complete(self, prompt: str, transcript: str, language: str) -> str:
        base = self.endpoint or ANTHROPIC_BASE_URL
        body = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "system": build_system_guard(language),
            "messages": [{"role": "user", "content": user_message(prompt, transcript)}],
        }
        headers = {"x-api-key": self.api_key, "anthropic-version": ANTHROPIC_VERSION}
        data = await self._post_json(f"{base}/v1/messages", body, headers=headers)
        return '\n'.join(block.get("text", '') for block in data.get("content") or [])


class OllamaBackend(HttpBackend):
    name = 'ollama'
    needs_api_key = False

    async def _complete(self, prompt: str, transcript: str, language: str) -> str:
        base = self.endpoint or 'http://localhost:11434'
        # Local models follow inline instructions more reliably than a system prompt
        full_prompt = f"{build_language_instruction(language)}\n\n{user_message(prompt, transcript)}"
        logger.debug("Ollama language: %s", language)
        body = {
            "model": self.model,
            "prompt": full_prompt,
            "stream": False,
            "options": {"temperature": self.temperature},
        }
        data = await self._post_json(f"{base}/api/generate", body)
        return data.get("response") or ''


BACKENDS: Dict[str, Type[SummaryBackend]] = {
    'gemini': GeminiBackend,
    'openai': OpenAIBackend,
    'openrouter': OpenRouterBackend,
    'anthropic': AnthropicBackend,
    'ollama': OllamaBackend,
}


def get_backend(llm: LLMSettings, min_chars: int = 40, min_letters: int = 30) -> SummaryBackend:
    """Instantiate the configured provider."""
    provider = (llm.provider or '').strip().lower()
    backend_cls = BACKENDS.get(provider)
    if backend_cls is None:
        raise ConfigurationError(f"Unsupported LLM provider: {llm.provider!r}")

    if provider == 'ollama':
        api_key, model, endpoint = '', llm.ollama_model, llm.ollama_endpoint
    elif provider == 'openai':
        api_key, model, endpoint = llm.openai_api_key, llm.openai_model, llm.openai_endpoint
    else:
        api_key = getattr(llm, f'{provider}_api_key')
        model = getattr(llm, f'{provider}_model')
        endpoint = ''

    return backend_cls(
        model=model,
        api_key=api_key,
        endpoint=endpoint,
        temperature=llm.temperature,
        max_tokens=llm.max_tokens,
        timeout=llm.timeout_seconds,
        min_chars=min_chars,
        min_letters=min_letters,
    )
