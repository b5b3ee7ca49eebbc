import logging
from typing import Any, Dict, List, Sequence

import httpx
from openai import APIConnectionError, APIStatusError, AsyncOpenAI

from ..errors import ConfigurationError, LlmEmptyResponseError, LlmRequestError
from ..models import Message
from ..settings import SettingsStore

logger = logging.getLogger(__name__)

# Model families that take max_completion_tokens instead of max_tokens.
NEWER_MODEL_MARKERS = ("gpt-4o", "gpt-5", "o1")


def token_limit_field(model: str) -> str:
    """Return the request field that carries the token limit for ``model``."""
    if any(marker in model for marker in NEWER_MODEL_MARKERS):
        return "max_completion_tokens"
    return "max_tokens"


class ChatTransport:
    """Stateless chat completion call against an OpenAI-compatible backend."""

    def __init__(
        self,
        store: SettingsStore,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._store = store
        self._http_client = http_client
        self._client: AsyncOpenAI | None = None
        self._client_key: tuple[str, str] | None = None

    def _get_client(self, api_key: str) -> AsyncOpenAI:
        """Return an SDK client for the current key and base URL (rebuilt when they change)."""
        settings = self._store.settings
        key = (api_key, settings.llm_base_url)
        if self._client is None or self._client_key != key:
            self._client = AsyncOpenAI(
                api_key=api_key,
                base_url=settings.llm_base_url,
                timeout=settings.request_timeout_seconds,
                max_retries=0,
                http_client=self._http_client,
            )
            self._client_key = key
        return self._client

    async def complete(
        self,
        messages: Sequence[Message],
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str:
        """Send ``messages`` and return the assistant's reply text.

        Args:
            messages: Full ordered conversation, system prompt first.
            model: Model name; defaults to the configured model.
            max_tokens: Completion token limit; omitted when None.
            temperature: Sampling temperature; omitted when None.

        Returns:
            str: Content of the first choice.

        Raises:
            ConfigurationError: no LLM API key is configured.
            LlmRequestError: non-success status or unreachable backend.
            LlmEmptyResponseError: the backend returned no choices.
        """
        settings = self._store.settings
        if not settings.llm_api_key:
            raise ConfigurationError(
                'LLM API key not configured. Use "config llm-key <key>" to set it.',
                setting="llm_api_key",
            )

        model = model or settings.llm_model
        if max_tokens is None:
            max_tokens = settings.llm_max_tokens
        if temperature is None:
            temperature = settings.llm_temperature

        request: Dict[str, Any] = {
            "model": model,
            "messages": [m.to_dict() for m in messages],
        }
        if max_tokens:
            request[token_limit_field(model)] = max_tokens
        if temperature is not None:
            request["temperature"] = temperature

        logger.debug("Chat completion: model=%s messages=%d", model, len(messages))
        client = self._get_client(settings.llm_api_key)
        try:
            response = await client.chat.completions.create(**request)
        except APIStatusError as e:
            logger.warning("LLM request rejected with status %s", e.status_code)
            raise LlmRequestError(e.status_code, e.response.text) from e
        except APIConnectionError as e:
            logger.warning("LLM request failed: %s", e)
            raise LlmRequestError(None, str(e)) from e

        choices: List[Any] = list(response.choices or [])
        if not choices:
            raise LlmEmptyResponseError()
        return choices[0].message.content or ""
