import asyncio
import copy
import dataclasses
import logging
import threading
from typing import Optional, Dict, List, Any, Callable, Tuple

import httpx

from .config import LLMConfig
from .errors import LLMError, ValidationError
from .types import CompletionRequest, CompletionResponse, Conversation, Provider, Role, UsageRecord
from .utils import create_tool_result
from .providers.base import BaseLLMProvider
from .providers.openai import OpenAIProvider
from .providers.anthropic import AnthropicProvider
from .providers.gemini import GeminiProvider

logger = logging.getLogger(__name__)

PROVIDER_CLASSES = {
    Provider.OPENAI: OpenAIProvider,
    Provider.GEMINI: GeminiProvider,
    Provider.ANTHROPIC: AnthropicProvider,
}


class UnifiedChatClient:
    """
    Unified client for interacting with multiple LLM providers.

    This class provides a single completion interface for OpenAI, Gemini
    and Claude (Anthropic). The provider is picked from the model name
    prefix (`gpt`, `gemini`, `claude`).

    Example:
        >>> async with UnifiedChatClient() as client:
        ...     request = CompletionRequest(
        ...         model="gpt-4o-mini",
        ...         conversation=[create_user_message("Hello!")],
        ...     )
        ...     response = await client.complete(request)
        ...     print(response.message["text"])
    """

    def __init__(
        self,
        config: Optional[LLMConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the UnifiedChatClient.

        Args:
            config (LLMConfig, optional): Endpoints, limits, retry policy and
                API keys. Keys left unset are read from the environment.
            http_client (httpx.AsyncClient, optional): Shared HTTP client. When
                omitted the client creates (and owns) one.
        """
        self.config = config or LLMConfig()
        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=self.config.request_timeout)

        self.providers: Dict[Provider, BaseLLMProvider] = {
            provider: cls(self.config, self.http_client)
            for provider, cls in PROVIDER_CLASSES.items()
        }

        self._usage_records: List[UsageRecord] = []
        self._usage_lock = threading.Lock()

    async def aclose(self) -> None:
        """Release the HTTP client if this instance created it."""
        if self._owns_http_client:
            await self.http_client.aclose()

    async def __aenter__(self) -> "UnifiedChatClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # ==========================================================================
    # Unified Chat Methods
    # ==========================================================================

    async def complete(
        self,
        request: CompletionRequest,
        *,
        timeout: Optional[float] = None,
    ) -> CompletionResponse:
        """
        Run one completion against the provider serving `request.model`.

        The request is validated before any network access, the caller's
        conversation is never mutated, and on success a usage record is
        stored (see `get_usage_records`).

        Args:
            request (CompletionRequest): The completion request.
            timeout (float, optional): Overall deadline in seconds, including
                retries and backoff.

        Returns:
            CompletionResponse: The reply message, stop reason and usage.

        Raises:
            ValidationError: If the request is invalid.
            AuthError: If the provider API key is missing or rejected.
            ExhaustedRetriesError: If retryable errors persisted.
            LLMError: Any other provider, decoding or transport failure.
            asyncio.TimeoutError: If `timeout` expires.
        """
        if request is None:
            raise ValidationError("the request cannot be None")

        provider = request.validate()
        conversation = copy.deepcopy(request.conversation)

        if timeout is not None:
            return await asyncio.wait_for(self._complete(provider, request, conversation), timeout)
        return await self._complete(provider, request, conversation)

    async def _complete(
        self,
        provider: Provider,
        request: CompletionRequest,
        conversation: Conversation,
    ) -> CompletionResponse:
        pipeline = self.providers[provider]
        try:
            body = await pipeline.chat(
                request.model,
                conversation,
                temperature=request.temperature,
                json_mode=request.json_mode,
                json_schema=request.json_schema,
                tools=request.tools,
                required_tool=request.required_tool,
                prohibit_tool=request.prohibit_tool,
            )
            message, stop_reason, usage_record = pipeline.parse_response(request.model, body)
        except LLMError as e:
            e.provider = e.provider or provider.value
            e.model = e.model or request.model
            raise

        with self._usage_lock:
            self._usage_records.append(usage_record)

        return CompletionResponse(
            model=request.model,
            provider=provider,
            stop_reason=stop_reason,
            message=message,
            usage_record=usage_record,
        )

    async def estimate_tokens(self, model: str, text: str) -> int:
        """
        Count the tokens of `text` for `model`.

        Gemini counts are exact (one request to `countTokens`); OpenAI and
        Anthropic counts are approximations and should NOT be used for billing.

        Raises:
            ValidationError: If the model prefix is unknown.
        """
        provider = Provider.from_model(model)
        if provider is None:
            raise ValidationError(f"invalid model type: {model}", model=model)
        return await self.providers[provider].estimate_tokens(model, text)

    def get_usage_records(self) -> List[UsageRecord]:
        """Return a snapshot of the usage records of all successful calls."""
        with self._usage_lock:
            return list(self._usage_records)

    async def complete_with_tools(
        self,
        request: CompletionRequest,
        tool_handlers: Dict[str, Callable],
        max_iterations: int = 10,
    ) -> Tuple[CompletionResponse, Conversation]:
        """
        Complete while automatically executing the tools the model calls.

        1. Sends the request.
        2. If the model calls a tool, runs the matching handler with the call
           arguments (sync or async).
        3. Appends the call and its result to the conversation.
        4. Repeats until the model answers with text or `max_iterations` is
           reached.

        `required_tool` only applies to the first request, otherwise the model
        could never stop calling it.

        Args:
            request (CompletionRequest): The initial request.
            tool_handlers (Dict[str, Callable]): Tool title -> handler.
            max_iterations (int): Safety limit for the loop. Defaults to 10.

        Returns:
            Tuple[CompletionResponse, Conversation]: The final response and
            the conversation including every tool call and result.
        """
        conversation = copy.deepcopy(request.conversation)
        current = request

        for _ in range(max_iterations):
            response = await self.complete(current)
            if response.message.get("role") != Role.TOOL_CALL:
                return response, conversation

            conversation.append(response.message)
            conversation.append(await self._execute_tool_call(response.message, tool_handlers))
            current = dataclasses.replace(current, conversation=conversation, required_tool=None)

        logger.warning("Stopped the tool loop after %d iterations", max_iterations)
        return response, conversation

    async def _execute_tool_call(self, tool_call: Dict[str, Any], tool_handlers: Dict[str, Callable]):
        """
        Run the handler for a single tool call and wrap its output as a tool result.

        Handler failures are reported back to the model as the result text.
        """
        tool_name = tool_call.get("tool_name", "")
        tool_id = tool_call.get("tool_use_id", "")
        arguments = tool_call.get("tool_arguments") or {}

        try:
            if tool_name in tool_handlers:
                result = tool_handlers[tool_name](arguments)
                if asyncio.iscoroutine(result):
                    result = await result
            else:
                result = f"Error: No handler for tool '{tool_name}'"
        except Exception as e:
            logger.warning("Tool '%s' failed: %s", tool_name, e)
            result = f"Error executing tool '{tool_name}': {str(e)}"

        return create_tool_result(tool_id, tool_name, str(result))
