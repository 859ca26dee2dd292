import asyncio
import copy

import pytest

from unillm.client import UnifiedChatClient
from unillm.config import LLMConfig, GPT_BASE_URL, ANTHROPIC_BASE_URL
from unillm.errors import AuthError, ValidationError
from unillm.providers.anthropic import AnthropicProvider
from unillm.providers.gemini import GeminiProvider
from unillm.providers.openai import OpenAIProvider
from unillm.types import CompletionRequest, Provider
from unillm.utils import create_conversation, create_user_message, create_tool

WEATHER = create_tool(
    "get_weather",
    "Get the weather for a city",
    {"type": "object", "properties": {"city": {"type": "string"}}, "required": ["city"]},
)

OPENAI_TOOL_CALL = [{
    "id": "call_1",
    "type": "function",
    "function": {"name": "get_weather", "arguments": '{"city": "Paris"}'},
}]


def simple_request(model="gpt-4o-mini", **kwargs):
    conversation = create_conversation("be terse")
    conversation.append(create_user_message("2+2?"))
    return CompletionRequest(model=model, conversation=conversation, **kwargs)


class TestUnifiedChatClient:

    def test_provider_table(self, make_client):
        client, _ = make_client()
        assert isinstance(client.providers[Provider.OPENAI], OpenAIProvider)
        assert isinstance(client.providers[Provider.GEMINI], GeminiProvider)
        assert isinstance(client.providers[Provider.ANTHROPIC], AnthropicProvider)

    @pytest.mark.asyncio
    async def test_dispatch_by_model_prefix(self, mock_env, make_client, openai_reply, anthropic_reply):
        client, transport = make_client((200, anthropic_reply()), (200, openai_reply()))

        claude = await client.complete(simple_request("claude-3-haiku"))
        gpt = await client.complete(simple_request("gpt-4o"))

        assert claude.provider is Provider.ANTHROPIC
        assert gpt.provider is Provider.OPENAI
        assert [str(r.url) for r in transport.requests] == [ANTHROPIC_BASE_URL, GPT_BASE_URL]

    @pytest.mark.asyncio
    async def test_usage_records_accumulate(self, mock_env, make_client, openai_reply, gemini_reply):
        client, _ = make_client((200, openai_reply()), (200, gemini_reply()))

        first = await client.complete(simple_request("gpt-4o"))
        second = await client.complete(simple_request("gemini-1.5-flash"))

        records = client.get_usage_records()
        assert records == [first.usage_record, second.usage_record]
        assert [r.model for r in records] == ["gpt-4o", "gemini-1.5-flash"]

        # snapshot, not the internal list
        records.clear()
        assert len(client.get_usage_records()) == 2

    @pytest.mark.asyncio
    async def test_missing_api_key(self, no_env, make_client):
        client, transport = make_client()

        with pytest.raises(AuthError, match="OPENAI_API_KEY") as exc_info:
            await client.complete(simple_request("gpt-4o"))

        assert exc_info.value.provider == "openai"
        assert exc_info.value.model == "gpt-4o"
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_explicit_key_overrides_env(self, no_env, make_client, anthropic_reply):
        client, transport = make_client((200, anthropic_reply()), config=LLMConfig(anthropic_api_key="sk-explicit"))

        await client.complete(simple_request("claude-3-haiku"))

        assert transport.requests[0].headers["x-api-key"] == "sk-explicit"

    @pytest.mark.asyncio
    async def test_none_request(self, make_client):
        client, _ = make_client()
        with pytest.raises(ValidationError):
            await client.complete(None)

    @pytest.mark.asyncio
    async def test_invalid_request_sends_nothing(self, mock_env, make_client):
        client, transport = make_client()

        with pytest.raises(ValidationError):
            await client.complete(simple_request("gpt-4o", json_mode=True))

        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_conversation_not_mutated(self, mock_env, make_client, anthropic_reply):
        client, _ = make_client((200, anthropic_reply("<response>{}</response>")))
        request = simple_request("claude-3-haiku", json_mode=True, json_schema="{}")
        before = copy.deepcopy(request.conversation)

        await client.complete(request)

        assert request.conversation == before

    @pytest.mark.asyncio
    async def test_timeout_cancels_backoff(self, mock_env, make_client):
        rate_limit = {"error": {"message": "Rate limit reached", "type": "requests", "code": "rate_limit_exceeded"}}
        client, transport = make_client((429, rate_limit), config=LLMConfig(transient_wait=30.0))

        with pytest.raises(asyncio.TimeoutError):
            await client.complete(simple_request("gpt-4o"), timeout=0.05)

        assert len(transport.requests) == 1
        assert client.get_usage_records() == []

    @pytest.mark.asyncio
    async def test_estimate_tokens_unknown_model(self, make_client):
        client, _ = make_client()
        with pytest.raises(ValidationError):
            await client.estimate_tokens("llama-3", "hello")

    @pytest.mark.asyncio
    async def test_aclose_owned_client(self):
        client = UnifiedChatClient()
        await client.aclose()
        assert client.http_client.is_closed

    @pytest.mark.asyncio
    async def test_injected_client_left_open(self, make_client):
        async with make_client()[0] as client:
            pass
        assert not client.http_client.is_closed


class TestCompleteWithTools:

    @pytest.mark.asyncio
    async def test_tool_loop(self, mock_env, make_client, openai_reply):
        client, transport = make_client(
            (200, openai_reply(None, tool_calls=OPENAI_TOOL_CALL)),
            (200, openai_reply("It is sunny in Paris.")),
        )
        calls = []

        def get_weather(args):
            calls.append(args)
            return "sunny"

        request = simple_request("gpt-4o", tools=[WEATHER], required_tool=WEATHER)
        response, conversation = await client.complete_with_tools(request, {"get_weather": get_weather})

        assert calls == [{"city": "Paris"}]
        assert response.message["text"] == "It is sunny in Paris."
        assert [m["role"] for m in conversation] == ["system", "user", "tool_call", "tool_result"]
        assert conversation[3]["tool_use_id"] == "call_1"
        assert conversation[3]["text"] == "sunny"

        first, second = transport.bodies
        assert first["tool_choice"] == {"type": "function", "function": {"name": "get_weather"}}
        assert "tool_choice" not in second
        assert second["messages"][-1] == {
            "role": "tool",
            "tool_call_id": "call_1",
            "name": "get_weather",
            "content": "sunny",
        }
        assert len(client.get_usage_records()) == 2
        assert len(request.conversation) == 2

    @pytest.mark.asyncio
    async def test_async_handler_error_is_reported(self, mock_env, make_client, openai_reply):
        client, transport = make_client(
            (200, openai_reply(None, tool_calls=OPENAI_TOOL_CALL)),
            (200, openai_reply("Sorry, I could not get the weather.")),
        )

        async def get_weather(args):
            raise RuntimeError("service down")

        _, conversation = await client.complete_with_tools(
            simple_request("gpt-4o", tools=[WEATHER]), {"get_weather": get_weather},
        )

        assert conversation[-1]["text"] == "Error executing tool 'get_weather': service down"
        assert transport.bodies[1]["messages"][-1]["content"] == conversation[-1]["text"]

    @pytest.mark.asyncio
    async def test_missing_handler(self, mock_env, make_client, openai_reply):
        client, _ = make_client(
            (200, openai_reply(None, tool_calls=OPENAI_TOOL_CALL)),
            (200, openai_reply("ok")),
        )

        _, conversation = await client.complete_with_tools(simple_request("gpt-4o", tools=[WEATHER]), {})

        assert conversation[-1]["text"] == "Error: No handler for tool 'get_weather'"

    @pytest.mark.asyncio
    async def test_max_iterations(self, mock_env, make_client, openai_reply):
        client, transport = make_client(*[(200, openai_reply(None, tool_calls=OPENAI_TOOL_CALL))] * 2)

        response, conversation = await client.complete_with_tools(
            simple_request("gpt-4o", tools=[WEATHER]), {"get_weather": lambda args: "sunny"}, max_iterations=2,
        )

        assert response.message["role"] == "tool_call"
        assert len(transport.requests) == 2
        assert len(conversation) == 6
