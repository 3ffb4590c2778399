"""Contract tests for OpenAICompletionClient with a mocked AsyncOpenAI client."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from openai import AsyncOpenAI

from forkchat.config import Settings
from forkchat.providers.base import ConfigurationError, ProviderError
from forkchat.providers.openai import (
    TITLE_INSTRUCTION,
    TITLE_MAX_TOKENS,
    OpenAICompletionClient,
    check_api_key,
)
from forkchat.tree.store import ConversationStore

MESSAGES = [
    {"role": "system", "content": "Be concise."},
    {"role": "user", "content": "Hello"},
]


def _make_mock_completion(content: str | None = "Hello!") -> MagicMock:
    choice = MagicMock()
    choice.message = MagicMock()
    choice.message.content = content
    completion = MagicMock()
    completion.choices = [choice]
    return completion


def _make_mock_client(completion: MagicMock | None = None) -> AsyncMock:
    client = AsyncMock()
    client.chat = MagicMock()
    client.chat.completions = MagicMock()
    client.chat.completions.create = AsyncMock(
        return_value=completion or _make_mock_completion()
    )
    return client


def _settings(**overrides) -> Settings:
    return Settings(openai_api_key="sk-live-123", **overrides)


def _rate_limited_client() -> AsyncOpenAI:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": {"message": "Rate limit reached"}})

    return AsyncOpenAI(
        api_key="sk-live-123",
        max_retries=0,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


class TestRequestShaping:
    async def test_default_family(self):
        mock = _make_mock_client()
        client = OpenAICompletionClient(client=mock, settings=_settings())
        result = await client.complete(MESSAGES)

        assert result == "Hello!"
        kwargs = mock.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["messages"] == MESSAGES
        assert kwargs["temperature"] == 0.7
        assert kwargs["max_tokens"] == 1000
        assert kwargs["stream"] is False
        assert "max_completion_tokens" not in kwargs

    async def test_gpt5_family(self):
        mock = _make_mock_client()
        client = OpenAICompletionClient(
            client=mock, settings=_settings(openai_model="gpt-5-mini", openai_max_tokens=256)
        )
        await client.complete(MESSAGES)

        kwargs = mock.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-5-mini"
        assert kwargs["max_completion_tokens"] == 256
        assert "temperature" not in kwargs
        assert "max_tokens" not in kwargs

    async def test_zero_temperature_sent(self):
        mock = _make_mock_client()
        client = OpenAICompletionClient(client=mock, settings=_settings(openai_temperature=0.0))
        await client.complete(MESSAGES)
        assert mock.chat.completions.create.call_args.kwargs["temperature"] == 0.0

    async def test_settings_reread_per_call(self, monkeypatch):
        mock = _make_mock_client()
        client = OpenAICompletionClient(client=mock)
        monkeypatch.setenv("OPENAI_API_KEY", "sk-live-123")
        monkeypatch.setenv("OPENAI_MODEL", "gpt-4o")
        await client.complete(MESSAGES)
        monkeypatch.setenv("OPENAI_MODEL", "gpt-5")
        await client.complete(MESSAGES)

        models = [c.kwargs["model"] for c in mock.chat.completions.create.call_args_list]
        assert models == ["gpt-4o", "gpt-5"]


class TestConfiguration:
    @pytest.mark.parametrize(
        "api_key",
        [None, "", "   ", "sk-xxxx", "sk-proj-xxxxxxxx", "your-api-key", "YOUR_OPENAI_API_KEY"],
    )
    async def test_missing_or_placeholder_key(self, api_key):
        mock = _make_mock_client()
        client = OpenAICompletionClient(client=mock, settings=Settings(openai_api_key=api_key))
        with pytest.raises(ConfigurationError):
            await client.complete(MESSAGES)
        mock.chat.completions.create.assert_not_called()

    def test_real_key_accepted(self):
        assert check_api_key("  sk-abc123  ") == "sk-abc123"


class TestErrors:
    async def test_empty_choices(self):
        completion = MagicMock()
        completion.choices = []
        client = OpenAICompletionClient(
            client=_make_mock_client(completion), settings=_settings()
        )
        with pytest.raises(ProviderError, match="No response received"):
            await client.complete(MESSAGES)

    async def test_none_content_is_empty_string(self):
        client = OpenAICompletionClient(
            client=_make_mock_client(_make_mock_completion(None)), settings=_settings()
        )
        assert await client.complete(MESSAGES) == ""

    async def test_http_error_message_from_body(self):
        client = OpenAICompletionClient(client=_rate_limited_client(), settings=_settings())
        with pytest.raises(ProviderError) as exc_info:
            await client.complete(MESSAGES)
        assert exc_info.value.message == "Rate limit reached"
        assert exc_info.value.status_code == 429

    async def test_http_error_without_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="")

        openai_client = AsyncOpenAI(
            api_key="sk-live-123",
            max_retries=0,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        client = OpenAICompletionClient(client=openai_client, settings=_settings())
        with pytest.raises(ProviderError) as exc_info:
            await client.complete(MESSAGES)
        assert exc_info.value.message == "HTTP 503: Service Unavailable"

    async def test_generation_error_lands_in_node(self, kv):
        client = OpenAICompletionClient(client=_rate_limited_client(), settings=_settings())
        store = ConversationStore(kv, client)
        store.initialize()
        user_id = await store.add_child("n0", "user")
        llm_id = await store.add_child(user_id, "llm")

        with pytest.raises(ProviderError):
            await store.generate_llm_response(llm_id)

        assert store.get_node(llm_id).text == "[Error: Rate limit reached]"
        assert not store.is_generating(llm_id)


class TestTitle:
    async def test_title_request(self):
        mock = _make_mock_client(_make_mock_completion('  "Trees and Graphs"  '))
        client = OpenAICompletionClient(client=mock, settings=_settings())
        title = await client.generate_title("SYSTEM: x\n\nUSER: y")

        assert title == "Trees and Graphs"
        kwargs = mock.chat.completions.create.call_args.kwargs
        assert kwargs["messages"][0] == {"role": "system", "content": TITLE_INSTRUCTION}
        assert kwargs["messages"][1]["content"] == "SYSTEM: x\n\nUSER: y"
        assert kwargs["max_tokens"] == TITLE_MAX_TOKENS

    async def test_title_requires_key(self):
        client = OpenAICompletionClient(
            client=_make_mock_client(), settings=Settings(openai_api_key=None)
        )
        with pytest.raises(ConfigurationError):
            await client.generate_title("USER: hi")


class TestClientLifecycle:
    def _patch_sdk(self, monkeypatch) -> list[AsyncMock]:
        created: list[AsyncMock] = []

        def factory(**kwargs):
            mock = _make_mock_client()
            mock.init_kwargs = kwargs
            created.append(mock)
            return mock

        monkeypatch.setattr("forkchat.providers.openai.AsyncOpenAI", factory)
        return created

    async def test_client_reused_for_same_credentials(self, monkeypatch):
        created = self._patch_sdk(monkeypatch)
        monkeypatch.setenv("OPENAI_API_KEY", "sk-live-123")
        client = OpenAICompletionClient()
        await client.complete(MESSAGES)
        await client.complete(MESSAGES)
        assert len(created) == 1
        created[0].close.assert_not_awaited()

    async def test_key_rotation_closes_previous_client(self, monkeypatch):
        created = self._patch_sdk(monkeypatch)
        client = OpenAICompletionClient()
        monkeypatch.setenv("OPENAI_API_KEY", "sk-live-123")
        await client.complete(MESSAGES)
        monkeypatch.setenv("OPENAI_API_KEY", "sk-live-456")
        await client.complete(MESSAGES)

        assert [c.init_kwargs["api_key"] for c in created] == ["sk-live-123", "sk-live-456"]
        created[0].close.assert_awaited_once()
        created[1].close.assert_not_awaited()

    async def test_close_releases_owned_client(self, monkeypatch):
        created = self._patch_sdk(monkeypatch)
        client = OpenAICompletionClient(settings=_settings())
        await client.complete(MESSAGES)
        await client.close()
        created[0].close.assert_awaited_once()

    async def test_close_leaves_injected_client_open(self):
        mock = _make_mock_client()
        client = OpenAICompletionClient(client=mock, settings=_settings())
        await client.complete(MESSAGES)
        await client.close()
        mock.close.assert_not_awaited()
