import json
import logging
import uuid
from typing import Dict, Any, List, Optional, Tuple

from .base import BaseLLMProvider
from ..config import GEMINI_SYSTEM_MESSAGE, resolve_api_key
from ..errors import LLMError, AuthError, RetryableError, ProviderProtocolError, DecodeError
from ..tools import tools_to_gemini, gemini_tool_config
from ..types import Message, Conversation, Provider, Role, Tool, UsageRecord
from ..utils import (
    create_message, create_tool_call, create_tool_result,
    strip_code_fence, is_valid_json,
)

logger = logging.getLogger(__name__)

JSON_INSTRUCTIONS = (
    "{content}\n\nPlease respond to this message ONLY with the given json schema. "
    "This schema should be parsed as valid json, and shall NOT contain backticks (`).\n\n"
    "JSON SCHEMA:\n{schema}"
)

SENTINEL_PREFIX = f"{GEMINI_SYSTEM_MESSAGE}: "

SAFETY_SETTINGS = [
    {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_ONLY_HIGH"},
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_ONLY_HIGH"},
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_ONLY_HIGH"},
    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_ONLY_HIGH"},
]

# google.rpc status codes
AUTH_STATUSES = {"UNAUTHENTICATED", "PERMISSION_DENIED"}
RETRYABLE_STATUSES = {"RESOURCE_EXHAUSTED", "ABORTED", "INTERNAL", "UNAVAILABLE"}


class GeminiProvider(BaseLLMProvider):
    """
    Provider for the Google Gemini `generateContent` REST API.
    """

    provider = Provider.GEMINI

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
        Send a chat request to the Gemini API.

        Handles:
        - Role mapping (assistant -> model) and the system message mode.
        - Tool declarations and `toolConfig`.
        - Safety settings.

        In JSON mode any markdown fence around the reply is stripped and the
        remainder must be valid JSON.

        Returns:
            Dict[str, Any]: The generateContent response body.

        Raises:
            DecodeError: If the JSON-mode reply is not valid JSON.
        """
        self._check_json_mode(json_mode, json_schema, model)
        api_key = resolve_api_key(self.config.gemini_api_key, self.provider_name)

        system_instruction, contents = self.encode_messages(conversation)

        body: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": {"temperature": temperature},
            "safetySettings": SAFETY_SETTINGS,
        }
        if system_instruction is not None:
            body["systemInstruction"] = {"parts": [{"text": system_instruction}]}

        inject_json = self.injects_json_instructions(json_mode, conversation)
        if inject_json:
            logger.debug("Running with json mode ENABLED")
            parts = contents[-1]["parts"]
            parts[0]["text"] = JSON_INSTRUCTIONS.format(content=parts[0].get("text", ""), schema=json_schema)
        else:
            logger.debug("Running with json mode DISABLED")

        if tools:
            body["tools"] = tools_to_gemini(tools)
            tool_config = gemini_tool_config(required_tool, prohibit_tool)
            if tool_config is not None:
                body["toolConfig"] = tool_config

        url = f"{self.config.gemini_base_url}/{model}:generateContent?key={api_key}"
        payload = await self._send(url, body, model=model, headers={"Content-Type": "application/json"})

        if not payload.get("candidates"):
            raise ProviderProtocolError(
                "the candidate list was 0",
                provider=self.provider_name,
                model=model,
                raw_body=json.dumps(payload),
            )

        if inject_json:
            self._unwrap_json(payload, model)
        return payload

    def _unwrap_json(self, payload: Dict[str, Any], model: str) -> None:
        parts = (payload["candidates"][0].get("content") or {}).get("parts") or []
        for part in parts:
            if "text" not in part:
                continue
            cleaned = strip_code_fence(part["text"])
            if not is_valid_json(cleaned):
                raise DecodeError(
                    "the model did not respond with valid json",
                    provider=self.provider_name,
                    model=model,
                    raw_body=part["text"],
                )
            part["text"] = cleaned

    def classify_error(self, status_code: int, payload: Dict[str, Any], raw: str) -> Optional[LLMError]:
        error = payload.get("error")
        if not error:
            return self.classify_status(status_code, raw)

        status = error.get("status") or ""
        message = error.get("message", "")

        if status in AUTH_STATUSES:
            return AuthError(f"the user is not authenticated: {message}")
        if status == "RESOURCE_EXHAUSTED":
            return RetryableError(f"the model is exhausted: {message}", code=status)
        if status in RETRYABLE_STATUSES:
            return RetryableError(f"transient error [{status}]: {message}", code=status)
        if status == "FAILED_PRECONDITION":
            return ProviderProtocolError(f"there was a failed pre-condition: {message}")
        return ProviderProtocolError(f"there was an unknown issue with the request: [{status}]: {message}")

    def parse_response(self, model: str, body: Dict[str, Any]) -> Tuple[Message, str, UsageRecord]:
        candidate = body["candidates"][0]
        content = candidate.get("content") or {"role": "model", "parts": []}
        content.setdefault("role", "model")

        metadata = body.get("usageMetadata") or {}
        record = self.normalize_usage(
            model,
            input_tokens=metadata.get("promptTokenCount"),
            output_tokens=metadata.get("candidatesTokenCount"),
            total_tokens=metadata.get("totalTokenCount"),
        )
        decoded = self.decode_messages([content])
        message = decoded[0] if decoded else create_message(Role.ASSISTANT, "")
        return message, candidate.get("finishReason") or "", record

    async def estimate_tokens(self, model: str, text: str) -> int:
        """
        Exact count from the `countTokens` endpoint.
        """
        api_key = resolve_api_key(self.config.gemini_api_key, self.provider_name)
        url = f"{self.config.gemini_base_url}/{model}:countTokens?key={api_key}"
        body = {"contents": [{"role": "user", "parts": [{"text": text}]}]}
        payload = await self._send(url, body, model=model, headers={"Content-Type": "application/json"})
        return int(payload.get("totalTokens", 0))

    # ==========================================================================
    # Codec
    # ==========================================================================

    def encode_messages(self, conversation: Conversation) -> Tuple[Optional[str], List[Dict[str, Any]]]:
        """
        Convert messages to Gemini `contents`.

        Gemini has no system role in `contents`. By default the system text is
        sent as a user turn prefixed with a fixed sentinel sentence, and the
        user message right after it shares that turn. With
        `config.gemini_system_instruction` it goes to `systemInstruction`.

        Args:
            conversation (Conversation): Internal message list.

        Returns:
            Tuple[Optional[str], List[Dict]]: (system instruction, contents).
        """
        system_instruction = None
        contents: List[Dict[str, Any]] = []
        fold_next_user = False

        for msg in conversation:
            role = msg.get("role")
            text = msg.get("text", "")

            if role == Role.SYSTEM:
                if self.config.gemini_system_instruction:
                    system_instruction = text
                else:
                    contents.append({"role": "user", "parts": [{"text": f"{SENTINEL_PREFIX}{text}"}]})
                    fold_next_user = True
                continue

            if role == Role.USER and fold_next_user:
                part = contents[-1]["parts"][0]
                part["text"] = f"{part['text']}\n\n{text}"
                fold_next_user = False
                continue
            fold_next_user = False

            if role == Role.TOOL_CALL:
                contents.append({
                    "role": "model",
                    "parts": [{
                        "functionCall": {
                            "name": msg.get("tool_name", ""),
                            "args": msg.get("tool_arguments") or {},
                        }
                    }],
                })
            elif role == Role.TOOL_RESULT:
                name = msg.get("tool_name", "")
                contents.append({
                    "role": "user",
                    "parts": [{
                        "functionResponse": {
                            "name": name,
                            "response": {"name": name, "content": text},
                        }
                    }],
                })
            elif role == Role.ASSISTANT:
                contents.append({"role": "model", "parts": [{"text": text}]})
            else:
                contents.append({"role": "user", "parts": [{"text": text}]})

        return system_instruction, contents

    def decode_messages(
        self,
        contents: List[Dict[str, Any]],
        system_instruction: Optional[str] = None,
    ) -> Conversation:
        """
        Convert Gemini `contents` back to internal messages.

        Gemini carries no call ids, so calls get a minted id
        (`gemini_<name>_<random hex>`) and a function response takes the id of
        the call decoded right before it.
        """
        decoded: Conversation = []
        if system_instruction is not None:
            decoded.append(create_message(Role.SYSTEM, system_instruction))

        for item in contents:
            role = item.get("role")
            parts = item.get("parts") or []

            call = next((p["functionCall"] for p in parts if "functionCall" in p), None)
            if call is not None:
                name = call.get("name", "")
                tool_use_id = call.get("id") or f"gemini_{name}_{uuid.uuid4().hex[:8]}"
                decoded.append(create_tool_call(tool_use_id, name, dict(call.get("args") or {})))
                continue

            response = next((p["functionResponse"] for p in parts if "functionResponse" in p), None)
            if response is not None:
                previous = decoded[-1] if decoded else {}
                tool_use_id = previous.get("tool_use_id", "") if previous.get("role") == Role.TOOL_CALL else ""
                content = (response.get("response") or {}).get("content", "")
                if not isinstance(content, str):
                    content = json.dumps(content)
                decoded.append(create_tool_result(tool_use_id, response.get("name", ""), content))
                continue

            text = "".join(p.get("text", "") for p in parts)
            if role == "model":
                decoded.append(create_message(Role.ASSISTANT, text))
            elif text.startswith(SENTINEL_PREFIX):
                system_text, sep, user_text = text[len(SENTINEL_PREFIX):].partition("\n\n")
                decoded.append(create_message(Role.SYSTEM, system_text))
                if sep:
                    decoded.append(create_message(Role.USER, user_text))
            else:
                decoded.append(create_message(Role.USER, text))

        return decoded
