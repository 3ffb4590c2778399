"""OpenAI completion client backed by the Chat Completions API."""

import logging
import re
from typing import Any

from openai import APIConnectionError, APIStatusError, AsyncOpenAI

from forkchat.config import Settings, load_settings
from forkchat.models import SamplingParams
from forkchat.providers.base import (
    CompletionClient,
    ConfigurationError,
    GenerationRequest,
    ProviderError,
    strip_title,
)
from forkchat.providers.families import FamilyTable, default_family_table

logger = logging.getLogger(__name__)

TITLE_INSTRUCTION = (
    "Generate a short, descriptive title (at most 6 words) for the following"
    " conversation. Respond with the title only."
)
TITLE_MAX_TOKENS = 30

_PLACEHOLDER_KEY = re.compile(r"^sk-(?:proj-)?x+$", re.IGNORECASE)
_PLACEHOLDER_VALUES = {
    "your-api-key",
    "your_api_key",
    "your-openai-api-key",
    "your_openai_api_key",
    "changeme",
}


def check_api_key(api_key: str | None) -> str:
    """Return the key, or raise ConfigurationError if it is missing or a placeholder."""
    if not api_key or not api_key.strip():
        raise ConfigurationError(
            "OpenAI API key is not configured. Set OPENAI_API_KEY in the environment"
            " or in a .env file."
        )
    key = api_key.strip()
    if _PLACEHOLDER_KEY.match(key) or key.lower() in _PLACEHOLDER_VALUES:
        raise ConfigurationError(
            "OpenAI API key is still a placeholder. Replace OPENAI_API_KEY with a real key."
        )
    return key


class OpenAICompletionClient(CompletionClient):
    """Completion client for OpenAI (or any API speaking its chat protocol).

    Settings are re-read on every call unless fixed at construction, so a key
    or model change applies to the next request.
    """

    def __init__(
        self,
        *,
        client: AsyncOpenAI | None = None,
        settings: Settings | None = None,
        families: FamilyTable | None = None,
    ) -> None:
        self._client = client
        self._settings = settings
        self._families = families or default_family_table()
        self._owned: tuple[tuple[str, str | None], AsyncOpenAI] | None = None

    @property
    def name(self) -> str:
        return "openai"

    async def complete(self, messages: list[dict[str, str]]) -> str:
        settings = self._current_settings()
        api_key = check_api_key(settings.openai_api_key)
        request = GenerationRequest(
            model=settings.openai_model,
            messages=messages,
            sampling_params=SamplingParams(
                temperature=settings.openai_temperature,
                max_tokens=settings.openai_max_tokens,
            ),
        )
        return await self._generate(request, api_key, settings.openai_base_url)

    async def generate_title(self, transcript: str) -> str:
        settings = self._current_settings()
        api_key = check_api_key(settings.openai_api_key)
        request = GenerationRequest(
            model=settings.openai_model,
            messages=[
                {"role": "system", "content": TITLE_INSTRUCTION},
                {"role": "user", "content": transcript},
            ],
            sampling_params=SamplingParams(
                temperature=settings.openai_temperature,
                max_tokens=TITLE_MAX_TOKENS,
            ),
        )
        content = await self._generate(request, api_key, settings.openai_base_url)
        return strip_title(content)

    def _current_settings(self) -> Settings:
        return self._settings or load_settings()

    async def _client_for(self, api_key: str, base_url: str | None) -> AsyncOpenAI:
        if self._client is not None:
            return self._client
        key = (api_key, base_url)
        if self._owned is not None and self._owned[0] == key:
            return self._owned[1]
        # Credentials changed; only the newest client stays open
        previous = self._owned
        client = AsyncOpenAI(api_key=api_key, base_url=base_url)
        self._owned = (key, client)
        if previous is not None:
            await previous[1].close()
        return client

    async def close(self) -> None:
        """Close the client this instance created. An injected client is left open."""
        if self._owned is not None:
            _, client = self._owned
            self._owned = None
            await client.close()

    async def _generate(
        self, request: GenerationRequest, api_key: str, base_url: str | None
    ) -> str:
        params = self._build_params(request)
        client = await self._client_for(api_key, base_url)
        try:
            response = await client.chat.completions.create(**params)
        except APIStatusError as e:
            message = _status_error_message(e)
            logger.warning("Completion request failed (%s): %s", e.status_code, message)
            raise ProviderError(message, status_code=e.status_code) from e
        except APIConnectionError as e:
            logger.warning("Completion request could not connect: %s", e)
            raise ProviderError(f"Could not reach the model provider: {e}") from e

        if not response.choices:
            raise ProviderError("No response received from the model")
        return response.choices[0].message.content or ""

    def _build_params(self, request: GenerationRequest) -> dict[str, Any]:
        """Build kwargs dict for client.chat.completions.create()."""
        sp = request.sampling_params
        params: dict[str, Any] = {
            "model": request.model,
            "messages": [
                {"role": m["role"], "content": m["content"]} for m in request.messages
            ],
            "stream": False,
        }
        params.update(
            self._families.shape(
                request.model, temperature=sp.temperature, max_tokens=sp.max_tokens
            )
        )
        return params


def _status_error_message(error: APIStatusError) -> str:
    """The provider's own message when the body carries one, else the HTTP status."""
    body = error.body
    if isinstance(body, dict):
        nested = body.get("error")
        if isinstance(nested, dict) and nested.get("message"):
            return str(nested["message"])
        if body.get("message"):
            return str(body["message"])
    return f"HTTP {error.status_code}: {error.response.reason_phrase}"
