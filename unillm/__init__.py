from .client import UnifiedChatClient
from .config import LLMConfig
from .errors import (
    LLMError, ValidationError, AuthError, RetryableError, ExhaustedRetriesError,
    ProviderProtocolError, DecodeError, TransportError,
)
from .types import (
    Message, Conversation, Role, Provider, Tool, ToolSchema,
    CompletionRequest, CompletionResponse, UsageRecord,
)
from .utils import (
    create_message, create_system_message, create_user_message, create_assistant_message,
    create_conversation, create_tool, create_tool_call, create_tool_result,
)
from .rich_printer import ConversationPrinter

__all__ = [
    "UnifiedChatClient",
    "LLMConfig",
    "LLMError",
    "ValidationError",
    "AuthError",
    "RetryableError",
    "ExhaustedRetriesError",
    "ProviderProtocolError",
    "DecodeError",
    "TransportError",
    "Message",
    "Conversation",
    "Role",
    "Provider",
    "Tool",
    "ToolSchema",
    "CompletionRequest",
    "CompletionResponse",
    "UsageRecord",
    "create_message",
    "create_system_message",
    "create_user_message",
    "create_assistant_message",
    "create_conversation",
    "create_tool",
    "create_tool_call",
    "create_tool_result",
    "ConversationPrinter",
]
