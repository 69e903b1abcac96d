"""Anthropic Claude AI provider implementation."""

import time
from typing import List, Optional

import anthropic
from anthropic import AsyncAnthropic

from taskhub.ai.exceptions import AIProviderError, AIRateLimitError
from taskhub.ai.providers.base import AIMessage, AIProvider, AIResponse


class AnthropicProvider(AIProvider):
    """Anthropic Claude implementation.

    Example:
        ```python
        provider = AnthropicProvider(api_key="sk-ant-...")
        response = await provider.complete([AIMessage(role="user", content="...")])
        ```
    """

    def __init__(
        self,
        api_key: str,
        default_model: str = "claude-3-5-sonnet-20241022",
        timeout: float = 60.0,
    ):
        self.client = AsyncAnthropic(
            api_key=api_key,
            timeout=timeout,
        )
        self._default_model = default_model

    @property
    def provider_name(self) -> str:
        return "anthropic"

    @property
    def default_model(self) -> str:
        return self._default_model

    async def complete(
        self,
        messages: List[AIMessage],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> AIResponse:
        """Generate a completion using Claude.

        Raises:
            AIProviderError: If the Anthropic API request fails
            AIRateLimitError: If rate limited by Anthropic
        """
        self._validate_messages(messages)

        model = model or self._default_model
        start_time = time.perf_counter()

        # System prompt travels outside the message list
        system_content = None
        conversation_messages = []

        for msg in messages:
            if msg.role == "system":
                system_content = msg.content
            else:
                conversation_messages.append({
                    "role": msg.role,
                    "content": msg.content,
                })

        request_kwargs = {
            "model": model,
            "messages": conversation_messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if system_content:
            request_kwargs["system"] = system_content

        try:
            response = await self.client.messages.create(**request_kwargs)
        except anthropic.RateLimitError as e:
            raise AIRateLimitError(
                provider=self.provider_name,
                message=str(e),
                retry_after=getattr(e, "retry_after", None),
            )
        except anthropic.APIError as e:
            raise AIProviderError(
                provider=self.provider_name,
                message=str(e),
                provider_status=getattr(e, "status_code", None),
            )

        latency_ms = int((time.perf_counter() - start_time) * 1000)
        text = "".join(block.text for block in response.content if block.type == "text")

        return AIResponse(
            content=text,
            model=model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            finish_reason=response.stop_reason or "stop",
            latency_ms=latency_ms,
        )
