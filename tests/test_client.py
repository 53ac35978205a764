"""tests for client with mocking."""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from ideamap.core.client import ClaudeClient, ClientProtocol, CompletionResult, MockClient


def _text_event(text):
    event = MagicMock()
    event.message = MagicMock()
    block = MagicMock()
    block.text = text
    event.message.content = [block]
    # no usage on this event
    del event.usage
    del event.total_cost_usd
    return event


def _sdk_instance(events, disconnect_error=None):
    instance = AsyncMock()
    instance.connect = AsyncMock()
    instance.query = AsyncMock()
    instance.disconnect = AsyncMock(side_effect=disconnect_error)

    async def receive():
        for event in events:
            yield event

    instance.receive_response = receive
    return instance


class TestCompletionResult:
    """tests for CompletionResult dataclass."""

    def test_defaults(self):
        """CompletionResult has zero defaults for usage fields."""
        r = CompletionResult(text="hello")
        assert r.text == "hello"
        assert r.input_tokens == 0
        assert r.output_tokens == 0
        assert r.cache_read_tokens == 0
        assert r.cache_creation_tokens == 0
        assert r.cost_usd == 0.0


class TestMockClient:
    """tests for MockClient."""

    def test_satisfies_protocol(self):
        assert isinstance(MockClient(), ClientProtocol)
        assert isinstance(ClaudeClient(), ClientProtocol)

    @pytest.mark.asyncio
    async def test_matched_response(self):
        """MockClient matches prompt substrings, ignoring case."""
        client = MockClient(responses={"HELLO": "world"})
        result = await client.complete("say hello please")
        assert result.text == "world"

    @pytest.mark.asyncio
    async def test_default_response_is_a_mind_map(self):
        """the default response is a usable generated graph."""
        client = MockClient()
        result = await client.complete("anything")
        assert '"nodes"' in result.text
        assert '"core-concept"' in result.text

    @pytest.mark.asyncio
    async def test_tracks_calls(self):
        client = MockClient()
        await client.complete("first")
        await client.complete("second")
        assert client.calls == ["first", "second"]


class TestClaudeClient:
    """tests for ClaudeClient."""

    @pytest.mark.asyncio
    async def test_complete_creates_fresh_client(self):
        """each complete() creates a fresh SDK client with no tools."""
        with patch("ideamap.core.client.ClaudeSDKClient") as MockSDK:
            instance = _sdk_instance([_text_event("test response")])
            MockSDK.return_value = instance

            client = ClaudeClient(model="haiku")
            result = await client.complete("test prompt")
            await client.complete("again")

            assert MockSDK.call_count == 2
            options = MockSDK.call_args[0][0]
            assert options.model == "haiku"
            assert options.allowed_tools == []
            instance.query.assert_any_call("test prompt")
            assert instance.disconnect.call_count == 2
            assert result.text == "test response"

    @pytest.mark.asyncio
    async def test_complete_captures_usage(self):
        """complete() extracts usage from the final result message."""
        with patch("ideamap.core.client.ClaudeSDKClient") as MockSDK:
            result_event = MagicMock()
            result_event.usage = {
                "input_tokens": 1500,
                "output_tokens": 800,
                "cache_read_input_tokens": 300,
                "cache_creation_input_tokens": 50,
            }
            result_event.total_cost_usd = 0.035
            # no text content on result event
            del result_event.message
            del result_event.content

            MockSDK.return_value = _sdk_instance([_text_event("response text"), result_event])

            result = await ClaudeClient().complete("test")

            assert result.text == "response text"
            assert result.input_tokens == 1500
            assert result.output_tokens == 800
            assert result.cache_read_tokens == 300
            assert result.cache_creation_tokens == 50
            assert result.cost_usd == 0.035

    @pytest.mark.asyncio
    async def test_joins_text_parts(self):
        with patch("ideamap.core.client.ClaudeSDKClient") as MockSDK:
            MockSDK.return_value = _sdk_instance([_text_event("part one"), _text_event("part two")])
            result = await ClaudeClient().complete("test")
            assert result.text == "part one\npart two"

    @pytest.mark.asyncio
    async def test_complete_handles_disconnect_error(self):
        """complete() ignores disconnect errors."""
        with patch("ideamap.core.client.ClaudeSDKClient") as MockSDK:
            MockSDK.return_value = _sdk_instance(
                [_text_event("response")],
                disconnect_error=Exception("cleanup failed"),
            )
            result = await ClaudeClient().complete("test")
            assert result.text == "response"

    @pytest.mark.asyncio
    async def test_complete_returns_no_response_on_empty(self):
        """complete() returns placeholder when no text received."""
        with patch("ideamap.core.client.ClaudeSDKClient") as MockSDK:
            MockSDK.return_value = _sdk_instance([])
            result = await ClaudeClient().complete("test")
            assert result.text == "(no response)"

    @pytest.mark.asyncio
    async def test_errors_wrapped(self):
        """sdk failures surface as RuntimeError and still disconnect."""
        with patch("ideamap.core.client.ClaudeSDKClient") as MockSDK:
            instance = _sdk_instance([])
            instance.query = AsyncMock(side_effect=ConnectionError("network down"))
            MockSDK.return_value = instance

            with pytest.raises(RuntimeError, match="claude api error: network down"):
                await ClaudeClient().complete("test")
            instance.disconnect.assert_called_once()
