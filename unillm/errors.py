from typing import Optional


class LLMError(Exception):
    """
    Base class for every error raised by unillm.

    Attributes:
        provider: Name of the provider involved, when known.
        model: Model identifier of the failing request, when known.
        raw_body: Raw response body for diagnosis, when one was received.
    """

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        raw_body: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.model = model
        self.raw_body = raw_body

    def __str__(self) -> str:
        context = ", ".join(
            f"{k}={v}" for k, v in (("provider", self.provider), ("model", self.model)) if v
        )
        return f"{self.message} ({context})" if context else self.message


class ValidationError(LLMError):
    """Bad caller input. Raised before any network access."""


class AuthError(LLMError):
    """Missing, invalid or insufficient credentials. Never retried."""


class RetryableError(LLMError):
    """Rate limit, overload or transient server failure."""

    def __init__(
        self,
        message: str,
        *,
        extra_wait: bool = True,
        code: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.extra_wait = extra_wait
        self.code = code


class ExhaustedRetriesError(LLMError):
    """A retryable error persisted through every attempt."""


class ProviderProtocolError(LLMError):
    """The provider answered with an error or shape that cannot be used."""


class DecodeError(LLMError):
    """A response body or a JSON-mode payload could not be parsed."""


class TransportError(LLMError):
    """The HTTP exchange itself failed (connection refused, timeout)."""
