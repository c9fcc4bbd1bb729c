"""
OpenAI LLM provider implementation.
"""

import openai
from llama_index.llms.openai import OpenAI

from minutes_engine.providers import LLMProviderBase
from shared_utils.constants import Defaults


class OpenAILLMProvider(LLMProviderBase):
    """OpenAI chat model via llama-index."""

    def __init__(self, model_id: str, api_key: str, timeout: float = Defaults.LLM_TIMEOUT):
        super().__init__(name=f"OpenAILLM({model_id})")
        self.model_id = model_id
        self.api_key = api_key
        self.timeout = timeout
        self._llm = None

    def initialize(self) -> None:
        """Initialize OpenAI LLM client."""
        try:
            # Retries are owned by MinutesGenerator
            self._llm = OpenAI(
                model=self.model_id,
                api_key=self.api_key,
                timeout=self.timeout,
                max_retries=0,
                temperature=0.2,
            )
            self.logger.info("openai_llm_initialized", model_id=self.model_id)
        except Exception as e:
            self.logger.error("openai_llm_init_failed", error=str(e))
            raise

    def is_available(self) -> bool:
        """Check if OpenAI LLM is available."""
        return self._llm is not None

    def is_transient(self, exc: Exception) -> bool:
        if isinstance(exc, (openai.APITimeoutError, openai.APIConnectionError, openai.RateLimitError)):
            return True
        if isinstance(exc, openai.APIStatusError):
            return exc.status_code >= 500
        return False
