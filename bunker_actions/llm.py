"""Generation client: HTTP connection to a chat or text-completion backend.

The orchestrator injects a client matching the protocol:

    async def complete(self, system_prompt: str, user_prompt: str,
                       structured: bool) -> GenerationReply: ...

`structured` asks the backend for JSON-only output where the wire format
supports it. Failures of any kind are raised as GenerationError; the
orchestrator turns that into a terminal result for the category.

Two implementations are provided:

    HttpGenerationClient  real HTTP client, supports OpenAI-compatible chat
                          (OpenRouter, Mistral) and KoboldCpp backends.
                          Selected by provider_format.
    SampleClient          returns a canned reply. Useful for running the
                          day cycle without a model.
"""

from __future__ import annotations

import logging
from typing import NamedTuple, Protocol

import httpx

from bunker_actions.config import ConnectionConfig, ProviderFormat

logger = logging.getLogger(__name__)


class GenerationReply(NamedTuple):
    text: str
    status_code: int


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------

class GenerationClient(Protocol):
    async def complete(self, system_prompt: str, user_prompt: str, structured: bool) -> GenerationReply: ...


# ---------------------------------------------------------------------------
# HttpGenerationClient
# ---------------------------------------------------------------------------

class HttpGenerationClient:
    """Async HTTP client for generation backends.

    Supported formats:
      "openai"     POST /v1/chat/completions
                   {"model": ..., "messages": [system, user],
                    "response_format": {"type": "json_object"}}  (structured only)
                   Response: {"choices": [{"message": {"content": "..."}}]}
      "koboldcpp"  POST /api/v1/generate  {"prompt": system + user}
                   Response: {"results": [{"text": "..."}]}

    Args:
        provider_url:    Base URL of the backend, e.g. "https://openrouter.ai/api".
        api_key:         Bearer token, or empty string if not required.
        provider_format: Wire format to use. Defaults to "openai".
        model:           Model identifier, used only by the openai format.
        timeout:         HTTP timeout in seconds. Defaults to 60.
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        provider_format: ProviderFormat = "openai",
        model: str = "",
        timeout: float = 60.0,
    ) -> None:
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._format = provider_format
        self._model = model
        self._timeout = timeout

    @classmethod
    def from_config(cls, conn: ConnectionConfig) -> "HttpGenerationClient":
        return cls(
            conn.provider_url,
            api_key=conn.api_key,
            provider_format=conn.provider_format,
            model=conn.model,
            timeout=conn.timeout,
        )

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _build_request(self, system_prompt: str, user_prompt: str, structured: bool) -> tuple[str, dict]:
        """Return (url, body) for the configured format."""
        if self._format == "openai":
            url = f"{self._base_url}/v1/chat/completions"
            messages = []
            if system_prompt:
                messages.append({"role": "system", "content": system_prompt})
            messages.append({"role": "user", "content": user_prompt})
            body: dict = {"messages": messages}
            if self._model:
                body["model"] = self._model
            if structured:
                body["response_format"] = {"type": "json_object"}
            return url, body

        # koboldcpp has no chat roles; the system block goes first
        url = f"{self._base_url}/api/v1/generate"
        prompt = f"{system_prompt}\n\n{user_prompt}" if system_prompt else user_prompt
        return url, {"prompt": prompt}

    def _parse_response(self, data: dict) -> str:
        """Extract the completion text from the response body."""
        if self._format == "openai":
            choices = data.get("choices")
            if not choices or "message" not in choices[0]:
                raise GenerationError("Unexpected response format from OpenAI-compatible backend")
            return choices[0]["message"].get("content") or ""

        results = data.get("results")
        if not results or "text" not in results[0]:
            raise GenerationError("Unexpected response format from KoboldCpp backend")
        return results[0]["text"]

    async def complete(self, system_prompt: str, user_prompt: str, structured: bool = True) -> GenerationReply:
        url, body = self._build_request(system_prompt, user_prompt, structured)
        logger.debug(
            "generation call url=%s system_len=%d user_len=%d structured=%s",
            url, len(system_prompt), len(user_prompt), structured,
        )

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise GenerationError(f"Cannot connect to generation backend at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise GenerationError(
                f"Generation backend returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise GenerationError(f"Generation backend timed out after {self._timeout}s") from e

        try:
            data = resp.json()
        except ValueError as e:
            raise GenerationError("Generation backend returned a non-JSON body") from e

        text = self._parse_response(data)
        logger.debug("generation response len=%d", len(text))
        return GenerationReply(text=text, status_code=resp.status_code)


# ---------------------------------------------------------------------------
# SampleClient
# ---------------------------------------------------------------------------

SAMPLE_REPLY = """```json
{
  "title": "Quiet Day",
  "description": "Nothing dramatic happens. The family rations carefully and waits.",
  "effects": [
    {"effectType": "ReduceFood", "intensity": 2, "target": ""},
    {"effectType": "ReduceWater", "intensity": 2, "target": ""}
  ],
  "choices": [
    {"text": "Take stock of the shelves", "effects": [{"effectType": "AddSupplies", "intensity": 1, "target": ""}]},
    {"text": "Rest", "effects": [{"effectType": "AddFood", "intensity": 1, "target": ""}]}
  ]
}
```"""


class SampleClient:
    """Returns a fixed reply. No network calls.

    Records every call in `calls` as (system_prompt, user_prompt, structured).
    """

    def __init__(self, text: str = SAMPLE_REPLY) -> None:
        self.text = text
        self.calls: list[tuple[str, str, bool]] = []

    async def complete(self, system_prompt: str, user_prompt: str, structured: bool = True) -> GenerationReply:
        logger.debug("SampleClient system_len=%d user_len=%d", len(system_prompt), len(user_prompt))
        self.calls.append((system_prompt, user_prompt, structured))
        return GenerationReply(text=self.text, status_code=200)


# ---------------------------------------------------------------------------
# GenerationError
# ---------------------------------------------------------------------------

class GenerationError(RuntimeError):
    """Raised when the generation backend cannot be reached or returns an error."""
