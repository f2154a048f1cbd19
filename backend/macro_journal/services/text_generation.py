"""
Text generation for insights: one attempt per call, never retried here.

HttpTextGenerator posts {prompt} to the proxy endpoints (/claude-snack, /claude-report) and
expects {text}. AgentTextGenerator runs the same agent in-process (used by the API itself).
Both raise TextGenerationError on any failure so rules can substitute fallbacks.
"""
import logging
from typing import Any, Protocol

import httpx
from pydantic_ai import Agent

from macro_journal.config import settings
from macro_journal.core.errors import TextGenerationError

logger = logging.getLogger(__name__)


class TextGenerator(Protocol):
    def generate(self, endpoint: str, prompt: str) -> str:
        """Generated text for prompt. Raises TextGenerationError on failure."""
        ...


def _text_from_body(body: Any) -> str:
    text = body.get("text") if isinstance(body, dict) else None
    if not isinstance(text, str) or not text.strip():
        raise TextGenerationError("Text generation returned a malformed body (no text)")
    return text.strip()


class HttpTextGenerator:
    """Client for the text-generation proxy."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self._base_url = (base_url or settings.text_generation_base_url).rstrip("/")
        self._timeout = timeout or settings.text_generation_timeout_seconds
        self._client = client

    def _post(self, url: str, prompt: str) -> httpx.Response:
        if self._client is not None:
            return self._client.post(url, json={"prompt": prompt}, timeout=self._timeout)
        with httpx.Client(timeout=self._timeout) as c:
            return c.post(url, json={"prompt": prompt})

    def generate(self, endpoint: str, prompt: str) -> str:
        url = f"{self._base_url}{endpoint}"
        try:
            r = self._post(url, prompt)
        except httpx.HTTPError as e:
            raise TextGenerationError(f"Text generation request failed: {e}") from e
        if not r.is_success:
            detail = r.text[:500] if r.text else ""
            raise TextGenerationError(f"Text generation error: {r.status_code} {detail}".strip())
        try:
            body = r.json()
        except ValueError as e:
            raise TextGenerationError("Text generation returned a non-JSON body") from e
        return _text_from_body(body)


class AgentTextGenerator:
    """In-process generator; endpoint is only used for logging."""

    def __init__(self, agent: Agent):
        self._agent = agent

    def generate(self, endpoint: str, prompt: str) -> str:
        try:
            result = self._agent.run_sync(prompt)
        except Exception as e:
            logger.warning("Agent run for %s failed: %s", endpoint, e)
            raise TextGenerationError(str(e)) from e
        output = result.output if isinstance(result.output, str) else str(result.output)
        return _text_from_body({"text": output})
