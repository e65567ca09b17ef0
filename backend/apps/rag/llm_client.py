"""
LLM Client Abstraction Layer.

Provides a unified async interface for generation that can switch between:
- Ollama (local inference)
- OpenAI-compatible APIs (OpenAI, Groq, Together, local servers)

Each client offers an atomic call (`chat`) and an incremental one
(`stream_chat`) that yields text deltas as they arrive. The embedding model
always uses Ollama regardless of the LLM provider setting.
"""
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List, Optional

import httpx
from django.conf import settings

logger = logging.getLogger(__name__)


@dataclass
class LLMMessage:
    """A message in a chat conversation."""
    role: str  # "system", "user", or "assistant"
    content: str


@dataclass
class LLMResponse:
    """Response from an atomic LLM call."""
    content: str
    model: str
    usage: Optional[Dict[str, int]] = None  # token usage if available


class LLMError(Exception):
    """Raised when an LLM call fails."""
    pass


def _to_wire(messages: List[LLMMessage]) -> List[Dict[str, str]]:
    return [{"role": msg.role, "content": msg.content} for msg in messages]


def _default_temperature() -> float:
    return float(getattr(settings, 'LLM_TEMPERATURE', 0.2))


def _default_max_tokens() -> int:
    return int(getattr(settings, 'LLM_MAX_TOKENS', 800))


class BaseLLMClient(ABC):
    """Abstract base class for LLM clients."""

    @abstractmethod
    async def chat(
        self,
        messages: List[LLMMessage],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        """
        Send a chat completion request and wait for the whole answer.

        Raises:
            LLMError: If the request fails
        """

    @abstractmethod
    def stream_chat(
        self,
        messages: List[LLMMessage],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> AsyncIterator[str]:
        """
        Stream a chat completion as text deltas.

        The returned async generator is finite and not restartable. Closing
        it early releases the underlying HTTP connection.

        Raises:
            LLMError: If the request fails before or during streaming
        """

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the model name being used."""


class OllamaClient(BaseLLMClient):
    """LLM client for Ollama local inference."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = getattr(settings, 'OLLAMA_BASE_URL', 'http://ollama:11434')
        self.model = getattr(settings, 'OLLAMA_CHAT_MODEL', 'llama3.2')
        self.timeout = getattr(settings, 'OLLAMA_CHAT_TIMEOUT', 600)
        self.transport = transport

    @property
    def model_name(self) -> str:
        return self.model

    def _body(self, messages, temperature, max_tokens, stream: bool) -> dict:
        return {
            "model": self.model,
            "messages": _to_wire(messages),
            "stream": stream,
            "options": {
                "temperature": _default_temperature() if temperature is None else temperature,
                "num_predict": max_tokens or _default_max_tokens(),
            },
        }

    async def chat(self, messages, temperature=None, max_tokens=None) -> LLMResponse:
        logger.info(f"Calling Ollama chat: model={self.model}")
        try:
            async with httpx.AsyncClient(timeout=float(self.timeout), transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/api/chat",
                    json=self._body(messages, temperature, max_tokens, stream=False),
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Ollama HTTP error: {e}")
            raise LLMError(f"Ollama service error: {e.response.status_code}")
        except httpx.TimeoutException:
            logger.error("Ollama request timed out")
            raise LLMError("Ollama service timed out")
        except httpx.RequestError as e:
            logger.error(f"Ollama connection error: {e}")
            raise LLMError("Could not connect to Ollama")
        except ValueError as e:
            raise LLMError(f"Invalid response from Ollama: {e}")

        content = data.get("message", {}).get("content", "")
        if not content:
            raise LLMError("Empty response from Ollama")

        logger.info(f"Ollama response: {len(content)} chars")
        return LLMResponse(content=content, model=self.model)

    async def stream_chat(self, messages, temperature=None, max_tokens=None) -> AsyncIterator[str]:
        logger.info(f"Streaming Ollama chat: model={self.model}")
        try:
            async with httpx.AsyncClient(timeout=float(self.timeout), transport=self.transport) as client:
                async with client.stream(
                    "POST",
                    f"{self.base_url}/api/chat",
                    json=self._body(messages, temperature, max_tokens, stream=True),
                ) as response:
                    if response.status_code >= 400:
                        await response.aread()
                        raise LLMError(f"Ollama service error: {response.status_code}")

                    # One JSON object per line until {"done": true}
                    async for line in response.aiter_lines():
                        if not line.strip():
                            continue
                        data = json.loads(line)
                        if data.get("error"):
                            raise LLMError(f"Ollama stream error: {data['error']}")
                        delta = data.get("message", {}).get("content", "")
                        if delta:
                            yield delta
                        if data.get("done"):
                            break
        except httpx.TimeoutException:
            logger.error("Ollama stream timed out")
            raise LLMError("Ollama service timed out")
        except httpx.RequestError as e:
            logger.error(f"Ollama connection error: {e}")
            raise LLMError("Could not connect to Ollama")
        except json.JSONDecodeError as e:
            raise LLMError(f"Malformed Ollama stream line: {e}")


class OpenAICompatibleClient(BaseLLMClient):
    """
    LLM client for OpenAI-compatible APIs.

    Works with: OpenAI, Azure OpenAI, Groq, Together, local servers, etc.
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = getattr(settings, 'OPENAI_API_KEY', '')
        self.base_url = getattr(settings, 'OPENAI_BASE_URL', 'https://api.openai.com/v1')
        self.model = getattr(settings, 'OPENAI_MODEL', 'gpt-4o-mini')
        self.timeout = getattr(settings, 'OPENAI_TIMEOUT', 120)
        self.transport = transport

        if not self.api_key:
            raise LLMError("OPENAI_API_KEY not configured")

    @property
    def model_name(self) -> str:
        return self.model

    @property
    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _body(self, messages, temperature, max_tokens, stream: bool) -> dict:
        return {
            "model": self.model,
            "messages": _to_wire(messages),
            "temperature": _default_temperature() if temperature is None else temperature,
            "max_tokens": max_tokens or _default_max_tokens(),
            "stream": stream,
        }

    async def chat(self, messages, temperature=None, max_tokens=None) -> LLMResponse:
        logger.info(f"Calling OpenAI API: model={self.model}")
        try:
            async with httpx.AsyncClient(timeout=float(self.timeout), transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    json=self._body(messages, temperature, max_tokens, stream=False),
                    headers=self._headers,
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"OpenAI HTTP error: {e}")
            raise LLMError(f"OpenAI API error: {e.response.status_code}")
        except httpx.TimeoutException:
            logger.error("OpenAI request timed out")
            raise LLMError("OpenAI API timed out")
        except httpx.RequestError as e:
            logger.error(f"OpenAI connection error: {e}")
            raise LLMError("Could not connect to OpenAI API")
        except ValueError as e:
            raise LLMError(f"Invalid response from OpenAI: {e}")

        choices = data.get("choices", [])
        if not choices:
            raise LLMError("No choices in OpenAI response")

        content = choices[0].get("message", {}).get("content", "")
        if not content:
            raise LLMError("Empty response from OpenAI")

        logger.info(f"OpenAI response: {len(content)} chars")
        return LLMResponse(content=content, model=self.model, usage=data.get("usage"))

    async def stream_chat(self, messages, temperature=None, max_tokens=None) -> AsyncIterator[str]:
        logger.info(f"Streaming OpenAI API: model={self.model}")
        try:
            async with httpx.AsyncClient(timeout=float(self.timeout), transport=self.transport) as client:
                async with client.stream(
                    "POST",
                    f"{self.base_url}/chat/completions",
                    json=self._body(messages, temperature, max_tokens, stream=True),
                    headers=self._headers,
                ) as response:
                    if response.status_code >= 400:
                        await response.aread()
                        raise LLMError(f"OpenAI API error: {response.status_code}")

                    # Server-sent events: "data: {...}" lines, then "data: [DONE]"
                    async for line in response.aiter_lines():
                        if not line.startswith("data:"):
                            continue
                        payload = line[len("data:"):].strip()
                        if payload == "[DONE]":
                            break
                        data = json.loads(payload)
                        choices = data.get("choices") or []
                        if not choices:
                            continue
                        delta = (choices[0].get("delta") or {}).get("content")
                        if delta:
                            yield delta
        except httpx.TimeoutException:
            logger.error("OpenAI stream timed out")
            raise LLMError("OpenAI API timed out")
        except httpx.RequestError as e:
            logger.error(f"OpenAI connection error: {e}")
            raise LLMError("Could not connect to OpenAI API")
        except json.JSONDecodeError as e:
            raise LLMError(f"Malformed OpenAI stream event: {e}")


# =============================================================================
# Client Factory
# =============================================================================

_client_instance: Optional[BaseLLMClient] = None


def get_llm_client() -> BaseLLMClient:
    """
    Get the configured LLM client instance.

    Uses LLM_PROVIDER setting to determine which client to use:
    - "ollama" (default): Local Ollama inference
    - "openai": OpenAI or compatible API
    """
    global _client_instance

    if _client_instance is not None:
        return _client_instance

    provider = getattr(settings, 'LLM_PROVIDER', 'ollama').lower()

    if provider == 'openai':
        logger.info("Using OpenAI-compatible API for LLM inference")
        _client_instance = OpenAICompatibleClient()
    else:
        logger.info("Using Ollama for LLM inference")
        _client_instance = OllamaClient()

    return _client_instance


def reset_llm_client():
    """Reset the cached client instance. Useful for testing."""
    global _client_instance
    _client_instance = None
