import os
from dataclasses import dataclass
from typing import Optional

import dotenv

from .errors import AuthError

# Load environment variables
dotenv.load_dotenv()

# =============================================================================
# Provider Defaults
# =============================================================================

GPT_BASE_URL = "https://api.openai.com/v1/chat/completions"
GPT_MAX_TOKENS = 8096

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"
GEMINI_SYSTEM_MESSAGE = (
    "This is the system message of the conversation, "
    "and should be used as a general reference for the entire conversation"
)

ANTHROPIC_BASE_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
ANTHROPIC_MAX_TOKENS = 4096

ENV_KEYS = {
    "openai": "OPENAI_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}


@dataclass
class LLMConfig:
    """
    Endpoints, limits, retry policy and credentials for all providers.

    Any API key left as None is read from the environment at call time
    (OPENAI_API_KEY, GEMINI_API_KEY, ANTHROPIC_API_KEY).
    """
    # OpenAI
    gpt_base_url: str = GPT_BASE_URL
    gpt_max_tokens: int = GPT_MAX_TOKENS
    openai_api_key: Optional[str] = None
    user_id: Optional[str] = None  # sent as the OpenAI `user` field

    # Gemini
    gemini_base_url: str = GEMINI_BASE_URL
    gemini_system_instruction: bool = False  # send System as `systemInstruction` instead of the sentinel turn
    gemini_api_key: Optional[str] = None

    # Anthropic
    anthropic_base_url: str = ANTHROPIC_BASE_URL
    anthropic_version: str = ANTHROPIC_VERSION
    anthropic_max_tokens: int = ANTHROPIC_MAX_TOKENS
    anthropic_api_key: Optional[str] = None

    # Retry policy
    max_attempts: int = 3
    initial_backoff: float = 1.0
    max_jitter: float = 1.0
    transient_wait: float = 2.0

    # HTTP
    request_timeout: float = 120.0


def resolve_api_key(explicit: Optional[str], provider: str) -> str:
    """
    Resolve the API key for a provider.

    The explicit value wins; otherwise the provider's environment variable
    is used. The literal string "null" counts as unset.

    Args:
        explicit (str, optional): Key passed through configuration.
        provider (str): One of 'openai', 'gemini', 'anthropic'.

    Returns:
        str: The API key.

    Raises:
        AuthError: If no key is available.
    """
    if explicit:
        return explicit

    env_var = ENV_KEYS[provider]
    api_key = os.getenv(env_var)
    if not api_key or api_key == "null":
        raise AuthError(f"the environment variable `{env_var}` is required", provider=provider)
    return api_key
