"""
Abstract base classes for swappable LLM providers.
Enables dependency injection and flexible component swapping.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from llama_index.core.llms import ChatMessage, MessageRole

from shared_utils.constants import LogScope
from shared_utils.error_handler import GenerationError
from shared_utils.logging_utils import get_scoped_logger


class BaseProvider(ABC):
    """Base class for all providers."""

    def __init__(self, name: str):
        self.name = name
        self.logger = get_scoped_logger(LogScope.PROVIDER).bind(provider=name)

    @abstractmethod
    def initialize(self) -> None:
        """Initialize provider. Called after instantiation."""
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Check if provider is available and credentials are valid."""
        pass


class LLMProviderBase(BaseProvider):
    """Abstract base for LLM providers.

    Subclasses build a llama-index LLM in ``initialize`` and map their SDK's
    exceptions onto transient/permanent in ``is_transient``.
    """

    _llm = None

    def generate(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        """Single chat call; SDK failures are raised as GenerationError."""
        if not self.is_available():
            raise GenerationError(f"{self.name} not initialized")

        messages: List[ChatMessage] = []
        if system_prompt:
            messages.append(ChatMessage(role=MessageRole.SYSTEM, content=system_prompt))
        messages.append(ChatMessage(role=MessageRole.USER, content=prompt))

        try:
            response = self._llm.chat(messages)
        except Exception as exc:
            transient = self.is_transient(exc)
            self.logger.error(
                "llm_generation_failed",
                error_type=type(exc).__name__,
                transient=transient,
                error=str(exc),
            )
            raise GenerationError(
                f"{self.name} call failed: {exc}", transient=transient
            ) from exc

        return response.message.content or ""

    @abstractmethod
    def is_transient(self, exc: Exception) -> bool:
        """True for timeouts, throttling and 5xx responses."""
        pass


class ProviderFactory(ABC):
    """Base factory for creating providers."""

    @staticmethod
    @abstractmethod
    def create(**kwargs) -> BaseProvider:
        """Create and initialize provider instance."""
        pass
