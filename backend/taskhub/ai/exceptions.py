"""AI module exceptions.

Custom exceptions for AI-related errors. They derive from ``TaskhubError`` so
the API layer renders them like any other domain failure.
"""

from typing import Optional

from taskhub.exceptions import TaskhubError


class AIError(TaskhubError):
    """Base exception for AI-related errors."""

    status_code = 502

    def __init__(self, message: str, code: str = "AI_ERROR"):
        super().__init__(message=message, code=code)


class AIProviderError(AIError):
    """Error from the AI provider.

    Raised when the underlying provider returns an error, such as
    authentication failures, invalid requests, or service unavailability.
    """

    def __init__(
        self,
        provider: str,
        message: str,
        provider_status: Optional[int] = None,
    ):
        self.provider = provider
        self.provider_status = provider_status
        super().__init__(
            message=f"[{provider}] {message}",
            code="AI_PROVIDER_ERROR",
        )


class AIRateLimitError(AIError):
    """Rate limit exceeded with the AI provider."""

    def __init__(
        self,
        provider: str,
        message: str,
        retry_after: Optional[int] = None,
    ):
        self.provider = provider
        self.retry_after = retry_after
        super().__init__(
            message=f"[{provider}] Rate limited: {message}",
            code="AI_RATE_LIMITED",
        )


class AIResponseParseError(AIError):
    """Provider answered, but not with the JSON shape we asked for."""

    def __init__(self, message: str):
        super().__init__(message=message, code="AI_BAD_RESPONSE")


class AIFeatureDisabledError(AIError):
    """Requested AI feature is not enabled globally or for this tenant."""

    status_code = 400

    def __init__(self, feature_name: str):
        self.feature_name = feature_name
        super().__init__(
            message=f"AI feature '{feature_name}' is not enabled",
            code="AI_FEATURE_DISABLED",
        )
