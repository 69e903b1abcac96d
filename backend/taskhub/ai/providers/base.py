"""Abstract base class for AI providers.

This module defines the interface that AI providers implement, so the
prioritizer can be handed any provider (or a fake one in tests).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Literal, Optional
from uuid import UUID, uuid4


@dataclass
class AIMessage:
    """A message in an AI conversation.

    Attributes:
        role: The role of the message sender ('system', 'user', or 'assistant')
        content: The text content of the message
    """
    role: Literal["system", "user", "assistant"]
    content: str


@dataclass
class AIResponse:
    """Response from an AI provider.

    Attributes:
        content: The generated text content
        model: The model identifier used for generation
        input_tokens: Number of tokens in the input/prompt
        output_tokens: Number of tokens in the generated response
        finish_reason: Why generation stopped ('stop', 'max_tokens', etc.)
        latency_ms: Time taken for the request in milliseconds
    """
    content: str
    model: str
    input_tokens: int
    output_tokens: int
    finish_reason: str
    latency_ms: Optional[int] = None
    request_id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def total_tokens(self) -> int:
        """Total tokens used (input + output)."""
        return self.input_tokens + self.output_tokens


class AIProvider(ABC):
    """Abstract base class for AI providers."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the name of this provider (e.g., 'anthropic')."""
        pass

    @property
    @abstractmethod
    def default_model(self) -> str:
        """Return the default model identifier for this provider."""
        pass

    @abstractmethod
    async def complete(
        self,
        messages: List[AIMessage],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> AIResponse:
        """Generate a completion for the given messages.

        Raises:
            AIProviderError: If the provider request fails
        """
        pass

    def _validate_messages(self, messages: List[AIMessage]) -> None:
        """Validate message list before sending to provider.

        Raises:
            ValueError: If messages are invalid
        """
        if not messages:
            raise ValueError("Messages list cannot be empty")

        for msg in messages:
            if msg.role not in ("system", "user", "assistant"):
                raise ValueError(f"Invalid message role: {msg.role}")
            if not msg.content:
                raise ValueError("Message content cannot be empty")
