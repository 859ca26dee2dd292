"""
Tool descriptor adapters.

One `Tool` ({title, description, schema}) is translated into the
declaration shape of each provider. The schema is copied verbatim, since
all three providers accept the same structural subset and validate it
server-side.
"""
import copy
from typing import Dict, Any, List, Optional

from .types import Tool


def to_openai(tool: Tool) -> Dict[str, Any]:
    """OpenAI function tool."""
    return {
        "type": "function",
        "function": {
            "name": tool["title"],
            "description": tool["description"],
            "parameters": copy.deepcopy(tool["schema"]),
        },
    }


def to_gemini_declaration(tool: Tool) -> Dict[str, Any]:
    """Gemini function declaration."""
    return {
        "name": tool["title"],
        "description": tool["description"],
        "parameters": copy.deepcopy(tool["schema"]),
    }


def to_anthropic(tool: Tool) -> Dict[str, Any]:
    """Anthropic tool object (`input_schema` instead of `parameters`)."""
    return {
        "name": tool["title"],
        "description": tool["description"],
        "input_schema": copy.deepcopy(tool["schema"]),
    }


def tools_to_openai(tools: List[Tool]) -> List[Dict[str, Any]]:
    return [to_openai(tool) for tool in tools]


def tools_to_gemini(tools: List[Tool]) -> List[Dict[str, Any]]:
    """
    Gemini nests every declaration inside a single tool group.

    Returns an empty list when there are no tools, otherwise exactly one group.
    """
    if not tools:
        return []
    return [{"functionDeclarations": [to_gemini_declaration(tool) for tool in tools]}]


def tools_to_anthropic(tools: List[Tool]) -> List[Dict[str, Any]]:
    return [to_anthropic(tool) for tool in tools]


# =============================================================================
# Tool Choice Directives
# =============================================================================

def openai_tool_choice(required_tool: Optional[Tool], prohibit_tool: bool) -> Optional[Any]:
    if prohibit_tool:
        return "none"
    if required_tool is not None:
        return {"type": "function", "function": {"name": required_tool["title"]}}
    return None


def gemini_tool_config(required_tool: Optional[Tool], prohibit_tool: bool) -> Optional[Dict[str, Any]]:
    if prohibit_tool:
        return {"functionCallingConfig": {"mode": "NONE"}}
    if required_tool is not None:
        return {
            "functionCallingConfig": {
                "mode": "ANY",
                "allowedFunctionNames": [required_tool["title"]],
            }
        }
    return None


def anthropic_tool_choice(required_tool: Optional[Tool], prohibit_tool: bool) -> Optional[Dict[str, Any]]:
    if prohibit_tool:
        return {"type": "none"}
    if required_tool is not None:
        return {"type": "tool", "name": required_tool["title"]}
    return None
