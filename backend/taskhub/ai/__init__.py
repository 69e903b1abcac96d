"""AI module for Taskhub.

Task prioritization behind a provider-agnostic interface.
"""

from taskhub.ai.providers.base import AIMessage, AIProvider, AIResponse
from taskhub.ai.service import TaskPrioritizer, build_prioritizer

__all__ = [
    "AIProvider",
    "AIMessage",
    "AIResponse",
    "TaskPrioritizer",
    "build_prioritizer",
]
