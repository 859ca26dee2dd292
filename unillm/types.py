import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Literal, List, Dict, Any, TypedDict, Optional

from .errors import ValidationError

# =============================================================================
# Type Definitions
# =============================================================================

RoleName = Literal["system", "user", "assistant", "tool_call", "tool_result"]


class Role:
    """
    Message roles understood by every provider codec.
    """
    SYSTEM: RoleName = "system"
    USER: RoleName = "user"
    ASSISTANT: RoleName = "assistant"
    TOOL_CALL: RoleName = "tool_call"
    TOOL_RESULT: RoleName = "tool_result"


class Provider(Enum):
    """
    Supported chat-completion backends.
    """
    OPENAI = "openai"
    GEMINI = "gemini"
    ANTHROPIC = "anthropic"

    @classmethod
    def from_model(cls, model: str) -> Optional["Provider"]:
        """
        Resolve the provider serving `model` from its name prefix.

        Returns None when no prefix matches.
        """
        for prefix, provider in MODEL_PREFIXES.items():
            if model.startswith(prefix):
                return provider
        return None


# Model-name prefix -> provider
MODEL_PREFIXES: Dict[str, Provider] = {
    "gpt": Provider.OPENAI,
    "gemini": Provider.GEMINI,
    "claude": Provider.ANTHROPIC,
}


# =============================================================================
# Tool Definitions
# =============================================================================

class ToolSchema(TypedDict, total=False):
    """
    Structural schema for tool parameters.

    The same shape is accepted by OpenAI, Gemini and Anthropic, so one
    definition is sent verbatim to all three.
    """
    type: str
    format: str
    description: str
    nullable: bool
    enum: List[str]
    properties: Dict[str, "ToolSchema"]
    required: List[str]
    items: "ToolSchema"


class Tool(TypedDict):
    """
    Provider-agnostic tool definition.
    """
    title: str
    description: str
    schema: ToolSchema


# =============================================================================
# Message Type
# =============================================================================

class Message(TypedDict, total=False):
    """
    A single conversation message.

    Roles:
    - "system": Instructions for the whole conversation (first message only)
    - "user": User message
    - "assistant": Model text response
    - "tool_call": Model request to run a tool (tool_use_id, tool_name, tool_arguments)
    - "tool_result": Caller answer to the preceding tool call (tool_use_id, tool_name)
    """
    role: RoleName
    text: str
    tool_use_id: str
    tool_name: str
    tool_arguments: Dict[str, Any]


Conversation = List[Message]


# =============================================================================
# Completion Types
# =============================================================================

@dataclass(frozen=True)
class UsageRecord:
    """
    Token accounting for one completion call.
    """
    model: str
    input_tokens: int
    output_tokens: int
    total_tokens: int
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


@dataclass
class CompletionRequest:
    """
    Everything needed for one completion call.

    `required_tool` forces the model to call that tool, `prohibit_tool`
    forbids tool calls altogether (and takes precedence).
    """
    model: str
    conversation: Conversation
    temperature: float = 0.7
    json_mode: bool = False
    json_schema: str = ""
    tools: List[Tool] = field(default_factory=list)
    required_tool: Optional[Tool] = None
    prohibit_tool: bool = False

    def validate(self) -> Provider:
        """
        Check the request preconditions and resolve its provider.

        Returns:
            Provider: The backend serving `model`.

        Raises:
            ValidationError: If any precondition is violated.
        """
        if not self.model:
            raise ValidationError("`model` cannot be empty")
        if self.json_mode and not self.json_schema:
            raise ValidationError("if `json_mode` is true, then `json_schema` cannot be empty")
        if not self.conversation:
            raise ValidationError("the conversation cannot be empty")

        for idx, msg in enumerate(self.conversation):
            role = msg.get("role")
            if role == Role.SYSTEM and idx != 0:
                raise ValidationError("a system message is only allowed as the first message")
            if role == Role.TOOL_RESULT:
                previous = self.conversation[idx - 1] if idx > 0 else None
                if (
                    previous is None
                    or previous.get("role") != Role.TOOL_CALL
                    or previous.get("tool_use_id") != msg.get("tool_use_id")
                ):
                    raise ValidationError(
                        f"tool result at position {idx} does not answer the preceding tool call"
                    )

        if self.conversation[-1].get("role") not in (Role.USER, Role.TOOL_RESULT):
            raise ValidationError("the last message must be a user message or a tool result")

        if self.required_tool is not None:
            titles = [t["title"] for t in self.tools]
            if self.required_tool["title"] not in titles:
                raise ValidationError(
                    f"required tool '{self.required_tool['title']}' is not in `tools`"
                )

        provider = Provider.from_model(self.model)
        if provider is None:
            raise ValidationError(f"invalid model type: {self.model}", model=self.model)
        return provider


@dataclass
class CompletionResponse:
    """
    Unified reply from any provider.
    """
    model: str
    provider: Provider
    stop_reason: str
    message: Message
    usage_record: UsageRecord
