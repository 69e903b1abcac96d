"""AI Provider implementations."""

from taskhub.ai.providers.anthropic import AnthropicProvider
from taskhub.ai.providers.base import AIMessage, AIProvider, AIResponse

__all__ = [
    "AIProvider",
    "AIMessage",
    "AIResponse",
    "AnthropicProvider",
]
