import json
from typing import Any, List
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from unillm.client import UnifiedChatClient
from unillm.config import LLMConfig


class RecordingTransport:
    """
    Replays queued responses and records every request it receives.

    A queued item is either `(status, body)` (dict bodies are sent as JSON,
    strings as raw text) or an exception instance to raise.
    """

    def __init__(self, responses: List[Any]):
        self.responses = list(responses)
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        status, body = item
        if isinstance(body, str):
            return httpx.Response(status, text=body)
        return httpx.Response(status, json=body)

    @property
    def bodies(self) -> List[dict]:
        return [json.loads(r.content) for r in self.requests]


@pytest.fixture
def mock_env(monkeypatch):
    """Mock environment variables for API keys."""
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-openai")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test-anthropic")
    monkeypatch.setenv("GEMINI_API_KEY", "AIza-test-gemini")


@pytest.fixture
def no_env(monkeypatch):
    """Remove every API key from the environment."""
    for name in ("OPENAI_API_KEY", "ANTHROPIC_API_KEY", "GEMINI_API_KEY"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def make_client():
    """Build a UnifiedChatClient whose HTTP traffic goes to a RecordingTransport."""
    def _make(*responses, config: LLMConfig = None):
        transport = RecordingTransport(responses)
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(transport))
        return UnifiedChatClient(config=config, http_client=http_client), transport
    return _make


@pytest.fixture
def no_sleep():
    """Skip retry sleeps and jitter; yields the sleep mock."""
    with patch("unillm.providers.base.asyncio.sleep", new_callable=AsyncMock) as mock_sleep, \
            patch("unillm.providers.base.random.uniform", return_value=0.0):
        yield mock_sleep


# =============================================================================
# Provider reply bodies
# =============================================================================

@pytest.fixture
def openai_reply():
    def _reply(text="4", tool_calls=None, finish_reason="stop"):
        message = {"role": "assistant", "content": text}
        if tool_calls:
            message["tool_calls"] = tool_calls
            finish_reason = "tool_calls"
        return {
            "id": "chatcmpl-123",
            "object": "chat.completion",
            "model": "gpt-4o-mini",
            "choices": [{"index": 0, "message": message, "finish_reason": finish_reason}],
            "usage": {"prompt_tokens": 10, "completion_tokens": 2, "total_tokens": 12},
        }
    return _reply


@pytest.fixture
def gemini_reply():
    def _reply(text="4", parts=None, finish_reason="STOP"):
        return {
            "candidates": [{
                "content": {"role": "model", "parts": parts or [{"text": text}]},
                "finishReason": finish_reason,
            }],
            "usageMetadata": {"promptTokenCount": 7, "candidatesTokenCount": 3, "totalTokenCount": 10},
        }
    return _reply


@pytest.fixture
def anthropic_reply():
    def _reply(text="4", content=None, stop_reason="end_turn"):
        return {
            "id": "msg_123",
            "type": "message",
            "role": "assistant",
            "content": content or [{"type": "text", "text": text}],
            "stop_reason": stop_reason,
            "usage": {"input_tokens": 5, "output_tokens": 1},
        }
    return _reply
