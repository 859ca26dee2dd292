import logging
from typing import Dict, Any, List, Optional, Tuple

from .base import BaseLLMProvider
from ..config import resolve_api_key
from ..errors import LLMError, AuthError, RetryableError, ProviderProtocolError
from ..tools import tools_to_anthropic, anthropic_tool_choice
from ..types import Message, Conversation, Provider, Role, Tool, UsageRecord
from ..utils import create_message, create_tool_call, create_tool_result, extract_tag

logger = logging.getLogger(__name__)

FORMAT_INSTRUCTIONS = (
    "Formatting Instructions:\nYou MUST place your response to this message inside <response></response> "
    "XML tags. Any context or extra information shall be placed outside these tags, with the <response> "
    "XML tag containing exactly what was requested."
)
JSON_INSTRUCTIONS = (
    "{content}\n\nPlease respond to this message ONLY with the given json schema inside the <schema> tag."
    "\n\n<schema>\n{schema}\n</schema>"
)

# Leading text block of a tool call that carries no prose
TOOL_CALL_FILLER = "Calling a tool."

AUTH_ERRORS = {"authentication_error", "permission_error"}
RETRYABLE_ERRORS = {"rate_limit_error", "overloaded_error", "api_error"}


class AnthropicProvider(BaseLLMProvider):
    """
    Provider for the Anthropic Messages API.
    """

    provider = Provider.ANTHROPIC

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
        Send a chat request to the Anthropic Messages API.

        Handles:
        - Promotion of the system message to the top-level `system` field.
        - Tool declarations and `tool_choice`.
        - JSON mode, where the reply is requested inside <response> tags.

        If the <response> tag cannot be found the raw text is kept and a
        warning is logged.

        Returns:
            Dict[str, Any]: The Messages API response body.
        """
        self._check_json_mode(json_mode, json_schema, model)
        api_key = resolve_api_key(self.config.anthropic_api_key, self.provider_name)

        system, messages = self.encode_messages(conversation)

        inject_json = self.injects_json_instructions(json_mode, conversation)
        if inject_json:
            logger.debug("Running with json mode ENABLED")
            system = f"{system}\n\n{FORMAT_INSTRUCTIONS}" if system else FORMAT_INSTRUCTIONS
            block = messages[-1]["content"][0]
            block["text"] = JSON_INSTRUCTIONS.format(content=block.get("text", ""), schema=json_schema)
        else:
            logger.debug("Running with json mode DISABLED")

        body: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": self.config.anthropic_max_tokens,
            "temperature": temperature,
        }
        if system is not None:
            body["system"] = system

        if tools:
            body["tools"] = tools_to_anthropic(tools)
            tool_choice = anthropic_tool_choice(required_tool, prohibit_tool)
            if tool_choice is not None:
                body["tool_choice"] = tool_choice

        headers = {
            "x-api-key": api_key,
            "anthropic-version": self.config.anthropic_version,
            "content-type": "application/json",
        }
        payload = await self._send(self.config.anthropic_base_url, body, model=model, headers=headers)

        if not payload.get("content"):
            raise ProviderProtocolError(
                "the response content was empty",
                provider=self.provider_name,
                model=model,
            )

        if inject_json:
            self._unwrap_response_tag(payload)
        return payload

    def _unwrap_response_tag(self, payload: Dict[str, Any]) -> None:
        blocks = payload["content"]
        # tool calls are returned as-is
        if any(b.get("type") == "tool_use" for b in blocks):
            return

        logger.debug("Parsing the AI message result")
        for block in blocks:
            if block.get("type") != "text":
                continue
            inner = extract_tag(block.get("text", ""), "response")
            if inner is None:
                logger.warning("there was an issue parsing the xml, using the raw response")
            else:
                block["text"] = inner

    def classify_error(self, status_code: int, payload: Dict[str, Any], raw: str) -> Optional[LLMError]:
        if payload.get("type") != "error":
            return self.classify_status(status_code, raw)

        error = payload.get("error") or {}
        error_type = error.get("type") or ""
        message = error.get("message", "")

        if error_type in AUTH_ERRORS:
            return AuthError(f"there was an issue authenticating: {message}")
        if error_type == "overloaded_error":
            return RetryableError(f"the api is overloaded: {message}", code=error_type)
        if error_type in RETRYABLE_ERRORS:
            return RetryableError(f"transient error [{error_type}]: {message}", code=error_type)
        return ProviderProtocolError(f"there was an unknown issue with the request: [{error_type}]: {message}")

    def parse_response(self, model: str, body: Dict[str, Any]) -> Tuple[Message, str, UsageRecord]:
        usage = body.get("usage") or {}
        record = self.normalize_usage(
            model,
            input_tokens=usage.get("input_tokens"),
            output_tokens=usage.get("output_tokens"),
        )
        message = self.decode_message("assistant", body.get("content") or [])
        return message, body.get("stop_reason") or "", record

    async def estimate_tokens(self, model: str, text: str) -> int:
        """
        Approximation of ~3.5 characters per token. Should NOT be used for billing.
        """
        return int(len(text) / 3.5)

    # ==========================================================================
    # Codec
    # ==========================================================================

    def encode_messages(self, conversation: Conversation) -> Tuple[Optional[str], List[Dict[str, Any]]]:
        """
        Convert internal messages to Anthropic's format.

        Anthropic expects:
        - System prompt as a separate top-level field.
        - Content as a list of blocks.
        - Tool results as user messages with `tool_result` blocks.

        Args:
            conversation (Conversation): Internal message list.

        Returns:
            Tuple[Optional[str], List[Dict]]: (system prompt, messages list).
        """
        system = None
        converted = []

        for idx, msg in enumerate(conversation):
            role = msg.get("role")
            text = msg.get("text", "")

            if role == Role.SYSTEM and idx == 0:
                system = text
            elif role == Role.TOOL_CALL:
                converted.append({
                    "role": "assistant",
                    "content": [
                        {"type": "text", "text": text or TOOL_CALL_FILLER},
                        {
                            "type": "tool_use",
                            "id": msg.get("tool_use_id", ""),
                            "name": msg.get("tool_name", ""),
                            "input": msg.get("tool_arguments") or {},
                        },
                    ],
                })
            elif role == Role.TOOL_RESULT:
                converted.append({
                    "role": "user",
                    "content": [{
                        "type": "tool_result",
                        "tool_use_id": msg.get("tool_use_id", ""),
                        "content": text,
                    }],
                })
            elif role == Role.ASSISTANT:
                converted.append({"role": "assistant", "content": [{"type": "text", "text": text}]})
            else:
                converted.append({"role": "user", "content": [{"type": "text", "text": text}]})

        return system, converted

    def decode_messages(
        self,
        messages: List[Dict[str, Any]],
        system: Optional[str] = None,
    ) -> Conversation:
        """
        Convert Anthropic messages back to internal messages.

        A tool result carries no tool name on the wire; it is taken from the
        tool call decoded right before it.
        """
        decoded: Conversation = []
        if system is not None:
            decoded.append(create_message(Role.SYSTEM, system))

        for item in messages:
            message = self.decode_message(item.get("role", ""), item.get("content") or [])
            if message["role"] == Role.TOOL_RESULT:
                previous = decoded[-1] if decoded else {}
                if previous.get("tool_use_id") == message["tool_use_id"]:
                    message["tool_name"] = previous.get("tool_name", "")
            decoded.append(message)
        return decoded

    @staticmethod
    def decode_message(role: str, content: Any) -> Message:
        """
        Decode one Anthropic turn. Unknown roles become user messages.
        """
        if isinstance(content, str):
            blocks = [{"type": "text", "text": content}]
        else:
            blocks = content

        texts = [b.get("text", "") for b in blocks if b.get("type") == "text"]
        text = "".join(texts)

        if role == "assistant":
            tool_use = next((b for b in blocks if b.get("type") == "tool_use"), None)
            if tool_use is not None:
                if text == TOOL_CALL_FILLER:
                    text = ""
                return create_tool_call(
                    tool_use.get("id", ""),
                    tool_use.get("name", ""),
                    dict(tool_use.get("input") or {}),
                    text=text,
                )
            return create_message(Role.ASSISTANT, text)

        tool_result = next((b for b in blocks if b.get("type") == "tool_result"), None)
        if tool_result is not None:
            result = tool_result.get("content", "")
            if isinstance(result, list):
                result = "".join(b.get("text", "") for b in result if b.get("type") == "text")
            return create_tool_result(tool_result.get("tool_use_id", ""), "", result)
        return create_message(Role.USER, text)
