import json
import logging
import re
from typing import Dict, Any, List, Optional, Tuple

from .base import BaseLLMProvider, RETRYABLE_STATUSES
from ..config import resolve_api_key
from ..errors import LLMError, AuthError, RetryableError, ProviderProtocolError, ValidationError
from ..tools import tools_to_openai, openai_tool_choice
from ..types import Message, Conversation, Provider, Role, Tool, UsageRecord
from ..utils import (
    create_message, create_tool_call, create_tool_result,
)

logger = logging.getLogger(__name__)

JSON_INSTRUCTIONS = "{content}\n\nPlease respond to this message ONLY with the given json schema.\n\nJSON SCHEMA:\n{schema}"

AUTH_ERRORS = {"authentication_error", "permission_error"}
RETRYABLE_ERRORS = {"rate_limit_exceeded", "requests", "tokens", "server_error"}
CONTEXT_LENGTH_CODE = "context_length_exceeded"


class OpenAIProvider(BaseLLMProvider):
    """
    Provider for the OpenAI chat-completions API.
    """

    provider = Provider.OPENAI

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
        Send a chat request using the OpenAI chat-completions API.

        Handles:
        - Message conversion to OpenAI format.
        - JSON mode (`response_format` plus schema instructions).
        - Tool declarations and `tool_choice`.

        JSON-mode replies are returned as the model produced them; OpenAI
        does not wrap them.

        Returns:
            Dict[str, Any]: The chat-completions response body.
        """
        self._check_json_mode(json_mode, json_schema, model)
        api_key = resolve_api_key(self.config.openai_api_key, self.provider_name)

        messages = self.encode_messages(conversation)

        body: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "n": 1,
            "stream": False,
        }
        if self.config.user_id:
            body["user"] = self.config.user_id

        if self.injects_json_instructions(json_mode, conversation):
            logger.debug("Running with json mode ENABLED")
            body["response_format"] = {"type": "json_object"}
            messages[-1]["content"] = JSON_INSTRUCTIONS.format(
                content=messages[-1].get("content") or "",
                schema=json_schema,
            )
        else:
            logger.debug("Running with json mode DISABLED")
            body["response_format"] = {"type": "text"}

        if tools:
            body["tools"] = tools_to_openai(tools)
            tool_choice = openai_tool_choice(required_tool, prohibit_tool)
            if tool_choice is not None:
                body["tool_choice"] = tool_choice

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
        }
        payload = await self._send(self.config.gpt_base_url, body, model=model, headers=headers)

        if not payload.get("choices"):
            raise ProviderProtocolError(
                "the completion list was 0",
                provider=self.provider_name,
                model=model,
                raw_body=json.dumps(payload),
            )
        return payload

    def classify_error(self, status_code: int, payload: Dict[str, Any], raw: str) -> Optional[LLMError]:
        error = payload.get("error")
        if not error:
            return self.classify_status(status_code, raw)

        error_type = error.get("type") or ""
        code = error.get("code") or ""
        message = error.get("message", "")

        if code == CONTEXT_LENGTH_CODE:
            # trimmed in prepare_retry, no need to wait
            return RetryableError(f"too many tokens: {message}", extra_wait=False, code=code)
        if status_code in (401, 403) or error_type in AUTH_ERRORS or code == "invalid_api_key":
            return AuthError(f"the user is not authenticated: {raw}")
        if error_type in RETRYABLE_ERRORS or code == "rate_limit_exceeded" or status_code in RETRYABLE_STATUSES:
            return RetryableError(f"rate limit or server error: {message}", code=code or error_type)
        if error_type == "invalid_request_error":
            if status_code == 404:
                return ProviderProtocolError(f"the requested resource was not found: {raw}")
            return ProviderProtocolError(f"there was a validation error: {raw}")
        if error_type == "not_found_error":
            return ProviderProtocolError(f"the requested resource was not found: {raw}")
        return ProviderProtocolError(f"there was an unknown error: {raw}")

    def prepare_retry(self, error: RetryableError, body: Dict[str, Any]) -> Dict[str, Any]:
        if error.code == CONTEXT_LENGTH_CODE:
            last = body["messages"][-1]
            content = last.get("content") or ""
            logger.warning("Trimming the last message to %d characters", self.config.gpt_max_tokens)
            last["content"] = content[:self.config.gpt_max_tokens]
        return body

    def parse_response(self, model: str, body: Dict[str, Any]) -> Tuple[Message, str, UsageRecord]:
        """
        OpenAI reports exact usage (`prompt_tokens`, `completion_tokens`, `total_tokens`).
        """
        choice = body["choices"][0]
        usage = body.get("usage") or {}
        record = self.normalize_usage(
            model,
            input_tokens=usage.get("prompt_tokens"),
            output_tokens=usage.get("completion_tokens"),
            total_tokens=usage.get("total_tokens"),
        )
        return self.decode_message(choice.get("message") or {}), choice.get("finish_reason") or "", record

    async def estimate_tokens(self, model: str, text: str) -> int:
        """
        Rough approximation. Should NOT be used for billing.
        """
        return approximate_tokens(text, "avg")

    # ==========================================================================
    # Codec
    # ==========================================================================

    def encode_messages(self, conversation: Conversation) -> List[Dict[str, Any]]:
        """
        Convert internal messages to OpenAI's expected format.

        Handles:
        - Role mapping (system, user, assistant, tool)
        - Tool calls (assistant message carrying `tool_calls`)
        - Tool results (separate messages with role "tool")

        Args:
            conversation (Conversation): Internal message list.

        Returns:
            List[Dict]: OpenAI-compatible message list.
        """
        converted = []
        for msg in conversation:
            role = msg.get("role")
            text = msg.get("text", "")

            if role == Role.TOOL_CALL:
                converted.append({
                    "role": "assistant",
                    "content": text or None,
                    "tool_calls": [
                        {
                            "id": msg.get("tool_use_id", ""),
                            "type": "function",
                            "function": {
                                "name": msg.get("tool_name", ""),
                                "arguments": json.dumps(msg.get("tool_arguments") or {}),
                            },
                        }
                    ],
                })
            elif role == Role.TOOL_RESULT:
                converted.append({
                    "role": "tool",
                    "tool_call_id": msg.get("tool_use_id", ""),
                    "name": msg.get("tool_name", ""),
                    "content": text,
                })
            elif role in (Role.SYSTEM, Role.ASSISTANT):
                converted.append({"role": role, "content": text})
            else:
                converted.append({"role": "user", "content": text})
        return converted

    def decode_messages(self, wire: List[Dict[str, Any]]) -> Conversation:
        return [self.decode_message(item) for item in wire]

    @staticmethod
    def decode_message(item: Dict[str, Any]) -> Message:
        """
        Parse one OpenAI message. Unknown roles become user messages.
        """
        role = item.get("role")
        content = item.get("content") or ""
        if isinstance(content, list):
            content = "".join(part.get("text", "") for part in content if isinstance(part, dict))

        if role == "system":
            return create_message(Role.SYSTEM, content)
        if role == "assistant":
            tool_calls = item.get("tool_calls") or []
            if tool_calls:
                if len(tool_calls) > 1:
                    logger.debug("Only the first of %d tool calls is kept", len(tool_calls))
                call = tool_calls[0]
                function = call.get("function") or {}
                raw_args = function.get("arguments") or "{}"
                try:
                    args = json.loads(raw_args)
                except json.JSONDecodeError:
                    args = {"_raw": raw_args}
                return create_tool_call(call.get("id", ""), function.get("name", ""), args, text=content)
            return create_message(Role.ASSISTANT, content)
        if role == "tool":
            return create_tool_result(item.get("tool_call_id", ""), item.get("name", ""), content)
        return create_message(Role.USER, content)


def approximate_tokens(text: str, method: str = "avg") -> int:
    """
    Approximate the token count of `text` from its words and characters.

    Args:
        text (str): Input text.
        method (str): 'avg', 'words', 'chars', 'max' or 'min'.

    Returns:
        int: Estimated token count.

    Raises:
        ValidationError: On an unknown method.
    """
    word_estimate = len(text.split()) / 0.75
    char_estimate = len(text) / 4.0

    # Include additional tokens for spaces and punctuation marks
    additional = len([field for field in re.split(r"[ .,!?;]", text) if field])
    word_estimate += additional
    char_estimate += additional

    match method:
        case "avg":
            output = (word_estimate + char_estimate) / 2
        case "words":
            output = word_estimate
        case "chars":
            output = char_estimate
        case "max":
            output = max(word_estimate, char_estimate)
        case "min":
            output = min(word_estimate, char_estimate)
        case _:
            raise ValidationError(f"invalid method: {method}")
    return int(output)
