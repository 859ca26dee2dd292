import asyncio
import logging
import random
from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional, Tuple

import httpx

from ..config import LLMConfig
from ..errors import (
    LLMError, AuthError, RetryableError, ExhaustedRetriesError,
    ProviderProtocolError, DecodeError, TransportError, ValidationError,
)
from ..types import Message, Conversation, Provider, Tool, UsageRecord, Role

logger = logging.getLogger(__name__)

# HTTP statuses worth another attempt when the body carries no usable error type
RETRYABLE_STATUSES = {429, 500, 502, 503, 504, 529}


class BaseLLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    A provider bundles the codec for one wire format (encode/decode of the
    conversation), request construction, the error taxonomy of the vendor,
    and token estimation. The retry/backoff loop is shared and lives here.
    """

    provider: Provider

    def __init__(self, config: LLMConfig, http_client: httpx.AsyncClient):
        self.config = config
        self.http_client = http_client

    @property
    def provider_name(self) -> str:
        return self.provider.value

    # ==========================================================================
    # Codec
    # ==========================================================================

    @abstractmethod
    def encode_messages(self, conversation: Conversation) -> Any:
        """
        Convert the internal conversation into the provider wire shape.
        """

    @abstractmethod
    def decode_messages(self, wire: Any) -> Conversation:
        """
        Convert provider wire messages back into the internal conversation.
        """

    @abstractmethod
    def parse_response(self, model: str, body: Dict[str, Any]) -> Tuple[Message, str, UsageRecord]:
        """
        Turn a successful response body into (message, stop_reason, usage_record).
        """

    # ==========================================================================
    # Transport
    # ==========================================================================

    @abstractmethod
    async def chat(
        self,
        model: str,
        conversation: Conversation,
        *,
        temperature: float = 0.7,
        json_mode: bool = False,
        json_schema: str = "",
        tools: Optional[List[Tool]] = None,
        required_tool: Optional[Tool] = None,
        prohibit_tool: bool = False,
    ) -> Dict[str, Any]:
        """
        Send one completion request and return the decoded response body.

        Args:
            model (str): The model identifier.
            conversation (Conversation): Messages to send. Not mutated.
            temperature (float): Sampling temperature.
            json_mode (bool): Constrain the reply to `json_schema`.
            json_schema (str): Schema text the reply must follow.
            tools (List[Tool], optional): Tools the model may call.
            required_tool (Tool, optional): Tool the model must call.
            prohibit_tool (bool): Forbid tool calls.

        Returns:
            Dict[str, Any]: The provider response body, with JSON-mode
            output already unwrapped.
        """

    @abstractmethod
    async def estimate_tokens(self, model: str, text: str) -> int:
        """
        Count (or approximate) the tokens of `text` for `model`.
        """

    @abstractmethod
    def classify_error(self, status_code: int, payload: Dict[str, Any], raw: str) -> Optional[LLMError]:
        """
        Map a response onto the error taxonomy.

        Returns None when the response is a success.
        """

    def prepare_retry(self, error: RetryableError, body: Dict[str, Any]) -> Dict[str, Any]:
        """
        Hook to adjust the request body before the next attempt.
        """
        return body

    async def _send(
        self,
        url: str,
        body: Dict[str, Any],
        *,
        model: str,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        POST `body` to `url`, retrying retryable errors with backoff.

        Between attempts the task sleeps a fixed extra wait (for rate limits
        and transient errors) and then `backoff + jitter`, where backoff
        starts at `config.initial_backoff` and doubles each time. Sleeping
        with asyncio.sleep lets a cancelled task stop immediately.

        Raises:
            TransportError: On connection failures or timeouts (not retried).
            DecodeError: If a successful or non-transient reply is not JSON.
            ExhaustedRetriesError: If every attempt hit a retryable error.
            LLMError: Any fatal error from `classify_error`.
        """
        attempts = self.config.max_attempts
        backoff = self.config.initial_backoff
        last_error: Optional[RetryableError] = None

        for attempt in range(attempts):
            logger.info("Sending %s request (attempt %d/%d)", self.provider_name, attempt + 1, attempts)
            try:
                resp = await self.http_client.post(
                    url,
                    json=body,
                    headers=headers,
                    timeout=self.config.request_timeout,
                )
            except httpx.TransportError as e:
                raise TransportError(
                    f"there was an issue sending the request: {e}",
                    provider=self.provider_name,
                    model=model,
                ) from e

            raw = resp.text
            logger.info("Completed %s request with status %d", self.provider_name, resp.status_code)
            logger.debug("Response body: %s", raw)

            error: Optional[LLMError]
            try:
                payload = resp.json()
            except ValueError as e:
                if resp.status_code not in RETRYABLE_STATUSES:
                    raise DecodeError(
                        "there was an issue parsing the response body",
                        provider=self.provider_name,
                        model=model,
                        raw_body=raw,
                    ) from e
                # plain text or html from a gateway in front of the api
                error = self.classify_status(resp.status_code, raw)
            else:
                if not isinstance(payload, dict):
                    raise DecodeError(
                        "the response body is not a JSON object",
                        provider=self.provider_name,
                        model=model,
                        raw_body=raw,
                    )
                error = self.classify_error(resp.status_code, payload, raw)
                if error is None:
                    return payload

            error.provider = self.provider_name
            error.model = model
            error.raw_body = raw
            if not isinstance(error, RetryableError):
                logger.error("%s request failed: %s", self.provider_name, error.message)
                raise error

            last_error = error
            if attempt == attempts - 1:
                break

            body = self.prepare_retry(error, body)
            if error.extra_wait:
                logger.warning(
                    "%s: %s. Waiting an additional %.1f seconds...",
                    self.provider_name, error.message, self.config.transient_wait,
                )
                await asyncio.sleep(self.config.transient_wait)

            delay = backoff + random.uniform(0, self.config.max_jitter)
            logger.warning("Retrying %s request in %.2fs", self.provider_name, delay)
            await asyncio.sleep(delay)
            backoff *= 2

        raise ExhaustedRetriesError(
            f"there was an issue with the request and could not recover after {attempts} attempts: "
            f"{last_error.message if last_error else 'unknown error'}",
            provider=self.provider_name,
            model=model,
            raw_body=last_error.raw_body if last_error else None,
        )

    # ==========================================================================
    # Shared helpers
    # ==========================================================================

    def _check_json_mode(self, json_mode: bool, json_schema: str, model: str) -> None:
        if json_mode and not json_schema:
            raise ValidationError(
                "please provide a valid json schema for the model to follow",
                provider=self.provider_name,
                model=model,
            )

    @staticmethod
    def injects_json_instructions(json_mode: bool, conversation: Conversation) -> bool:
        """
        JSON-mode instructions are never appended to a tool result turn.
        """
        if not json_mode or not conversation:
            return False
        return conversation[-1].get("role") != Role.TOOL_RESULT

    def classify_status(self, status_code: int, message: str) -> Optional[LLMError]:
        """
        Fallback classification by HTTP status when the body has no known error type.
        """
        if 200 <= status_code < 300:
            return None
        if status_code in (401, 403):
            return AuthError(f"the user is not authenticated: {message}")
        if status_code in RETRYABLE_STATUSES:
            return RetryableError(f"transient error ({status_code}): {message}")
        return ProviderProtocolError(f"there was an unknown error ({status_code}): {message}")

    @staticmethod
    def normalize_usage(
        model: str,
        *,
        input_tokens: Optional[int],
        output_tokens: Optional[int],
        total_tokens: Optional[int] = None,
    ) -> UsageRecord:
        """
        Build a UsageRecord from provider-reported token counts.

        Missing counts are recorded as 0; the total is calculated when the
        provider does not report it.

        Args:
            model (str): Model identifier of the call.
            input_tokens (int, optional): Number of prompt tokens.
            output_tokens (int, optional): Number of generated tokens.
            total_tokens (int, optional): Total token count.

        Returns:
            UsageRecord: A new, immutable usage record.
        """
        input_tokens = input_tokens or 0
        output_tokens = output_tokens or 0
        # Calculate total if not provided
        if total_tokens is None:
            total_tokens = input_tokens + output_tokens

        return UsageRecord(
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=total_tokens,
        )
