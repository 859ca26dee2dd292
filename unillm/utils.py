import json
import re
from typing import Optional, Dict, Any

from .types import Message, Role, RoleName, Tool, ToolSchema, Conversation

# =============================================================================
# Message Helpers
# =============================================================================

def create_message(role: RoleName, text: str) -> Message:
    """
    Create a plain text Message.

    Args:
        role (str): 'system', 'user' or 'assistant'.
        text (str): The message content.

    Returns:
        Message: A dictionary {"role": role, "text": text}.
    """
    return {"role": role, "text": text}


def create_system_message(text: str) -> Message:
    return create_message(Role.SYSTEM, text)


def create_user_message(text: str) -> Message:
    return create_message(Role.USER, text)


def create_assistant_message(text: str) -> Message:
    return create_message(Role.ASSISTANT, text)


def create_conversation(system_text: Optional[str] = None) -> Conversation:
    """
    Start a conversation, seeded with a system message when one is given.
    """
    if system_text:
        return [create_system_message(system_text)]
    return []


# =============================================================================
# Tool Calling Helpers
# =============================================================================

def create_tool(title: str, description: str, schema: ToolSchema) -> Tool:
    """
    Create a provider-agnostic Tool definition.

    Args:
        title (str): The name of the function/tool to be called.
        description (str): A clear description of what the tool does.
        schema (ToolSchema): Structural schema of the tool arguments,
            usually {"type": "object", "properties": {...}, "required": [...]}.

    Returns:
        Tool: A dictionary representing the tool definition.
    """
    return {
        "title": title,
        "description": description,
        "schema": schema,
    }


def create_tool_call(
    tool_use_id: str,
    tool_name: str,
    arguments: Dict[str, Any],
    text: str = "",
) -> Message:
    """
    Create a tool call message, as produced by a model requesting a tool.

    Args:
        tool_use_id (str): Identifier of the call.
        tool_name (str): Name of the tool to run.
        arguments (Dict): Parsed JSON arguments.
        text (str): Optional prose accompanying the call (usually empty).

    Returns:
        Message: A message dictionary with role='tool_call'.
    """
    return {
        "role": Role.TOOL_CALL,
        "text": text,
        "tool_use_id": tool_use_id,
        "tool_name": tool_name,
        "tool_arguments": arguments,
    }


def create_tool_result(tool_use_id: str, tool_name: str, text: str) -> Message:
    """
    Create a tool result message to send back to the LLM.

    Args:
        tool_use_id (str): The ID of the tool call this result answers.
        tool_name (str): The name of the tool that was run.
        text (str): The stringified result of the tool execution.

    Returns:
        Message: A message dictionary with role='tool_result'.
    """
    return {
        "role": Role.TOOL_RESULT,
        "text": text,
        "tool_use_id": tool_use_id,
        "tool_name": tool_name,
    }


# =============================================================================
# JSON Mode Helpers
# =============================================================================

_FENCE_RE = re.compile(r"^\s*```[a-zA-Z]*\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)


def extract_tag(text: str, tag: str) -> Optional[str]:
    """
    Return the content of the first <tag>...</tag> block, or None.

    Whitespace around the payload is stripped; an empty block counts as missing.
    """
    match = re.search(rf"<{tag}>(.*?)</{tag}>", text, re.DOTALL)
    if match is None:
        return None
    inner = match.group(1).strip()
    return inner or None


def strip_code_fence(text: str) -> str:
    """
    Remove a surrounding markdown code fence (```json ... ```) if present.
    """
    match = _FENCE_RE.match(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def is_valid_json(text: str) -> bool:
    try:
        json.loads(text)
    except ValueError:
        return False
    return True
