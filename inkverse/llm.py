"""LLM client: HTTP connection to an OpenAI-compatible chat-completions backend.

The pipeline injects a completion client matching the protocol:

    def stream(self, stage, system_prompt, messages, temperature) -> AsyncIterator[str]
    async def complete(self, stage, system_prompt, user_prompt, temperature) -> str

`stage` identifies which pipeline step is calling (e.g. "muse",
"intent_classifier"). The implementation uses it for logging; test doubles
use it to dispatch canned responses.

Production code constructs an HttpLLM from config in create_app() and hands
it to the chat pipeline. Tests use StubLLM (defined in conftest) instead.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol. Every completion client must match these signatures
# ---------------------------------------------------------------------------

class CompletionClient(Protocol):
    def stream(
        self,
        stage: str,
        system_prompt: str,
        messages: list[dict[str, str]],
        temperature: float = 0.7,
    ) -> AsyncIterator[str]: ...

    async def complete(
        self,
        stage: str,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.0,
    ) -> str: ...


# ---------------------------------------------------------------------------
# HttpLLM connects to a real backend
# ---------------------------------------------------------------------------

class HttpLLM:
    """Async HTTP client for OpenAI-compatible chat completions (Groq by default).

    POST {provider_url}/v1/chat/completions
      {"model": ..., "messages": [...], "temperature": ..., "stream": bool}
    Non-streamed response: {"choices": [{"message": {"content": "..."}}]}
    Streamed response: SSE lines `data: {"choices": [{"delta": {"content": "..."}}]}`
    terminated by `data: [DONE]`.

    Args:
        provider_url: Base URL of the backend, e.g. "https://api.groq.com/openai".
        api_key:      Bearer token, or empty string if not required.
        model:        Model identifier sent with every request.
        timeout:      HTTP timeout in seconds. Defaults to 120.
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        model: str = "",
        timeout: float = 120.0,
    ) -> None:
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._model = model
        self._timeout = timeout

    @property
    def url(self) -> str:
        return f"{self._base_url}/v1/chat/completions"

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _build_body(
        self, messages: list[dict[str, str]], temperature: float, stream: bool
    ) -> dict:
        body: dict = {"messages": messages, "temperature": temperature}
        if self._model:
            body["model"] = self._model
        if stream:
            body["stream"] = True
        return body

    def _parse_response(self, data: dict) -> str:
        """Extract the completion text from a non-streamed response body."""
        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices or "message" not in choices[0]:
            raise LLMError("Unexpected response format from chat-completions backend")
        return choices[0]["message"].get("content") or ""

    def _wrap_error(self, e: Exception) -> LLMError:
        if isinstance(e, httpx.ConnectError):
            return LLMError(f"Cannot connect to LLM backend at {self._base_url}")
        if isinstance(e, httpx.HTTPStatusError):
            return LLMError(f"LLM backend returned HTTP {e.response.status_code}")
        if isinstance(e, httpx.TimeoutException):
            return LLMError(f"LLM backend timed out after {self._timeout}s")
        return LLMError(f"LLM request failed: {e}")

    async def complete(
        self,
        stage: str,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.0,
    ) -> str:
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        body = self._build_body(messages, temperature, stream=False)
        logger.debug("llm call stage=%s url=%s prompt_len=%d", stage, self.url, len(user_prompt))

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self.url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.HTTPError as e:
            raise self._wrap_error(e) from e

        try:
            data = resp.json()
        except ValueError as e:
            raise LLMError("LLM backend returned a non-JSON response") from e
        text = self._parse_response(data)
        logger.debug("llm response stage=%s len=%d", stage, len(text))
        return text

    async def stream(
        self,
        stage: str,
        system_prompt: str,
        messages: list[dict[str, str]],
        temperature: float = 0.7,
    ) -> AsyncIterator[str]:
        full = [{"role": "system", "content": system_prompt}, *messages]
        body = self._build_body(full, temperature, stream=True)
        logger.debug("llm stream stage=%s url=%s messages=%d", stage, self.url, len(full))

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                async with client.stream(
                    "POST", self.url, json=body, headers=self._headers()
                ) as resp:
                    resp.raise_for_status()
                    async for line in resp.aiter_lines():
                        delta = _parse_stream_line(line)
                        if delta is None:
                            break
                        if delta:
                            yield delta
        except httpx.HTTPError as e:
            raise self._wrap_error(e) from e


def _parse_stream_line(line: str) -> str | None:
    """Return the token delta in one SSE line, "" for non-content lines, None at [DONE]."""
    line = line.strip()
    if not line.startswith("data:"):
        return ""
    payload = line[len("data:"):].strip()
    if payload == "[DONE]":
        return None
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        logger.warning("Skipping malformed stream chunk: %r", payload[:200])
        return ""
    choices = data.get("choices") or [{}]
    return (choices[0].get("delta") or {}).get("content") or ""


# ---------------------------------------------------------------------------
# LLMError is raised by HttpLLM for all connection and protocol failures
# ---------------------------------------------------------------------------

class LLMError(RuntimeError):
    """Raised when the LLM backend cannot be reached or returns an error."""
