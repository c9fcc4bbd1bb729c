"""
Port interface for LLM text generation.

minutes_engine/providers/ implements this contract so services depend on the
interface, not the implementation.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable


@runtime_checkable
class LLMProviderPort(Protocol):
    """Abstract interface for LLM text generation."""

    def generate(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        """Generate text from a prompt.

        Args:
            prompt: User prompt.
            system_prompt: Optional instructions sent as a system message.

        Returns:
            Generated text string.

        Raises:
            GenerationError: ``transient=True`` for timeouts/5xx, otherwise permanent.
        """
        ...
