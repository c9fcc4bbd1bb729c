"""
Bedrock LLM provider implementation.
"""

from botocore.exceptions import (
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)
from llama_index.llms.bedrock import Bedrock

from minutes_engine.providers import LLMProviderBase
from shared_utils.constants import Defaults


_TRANSIENT_CODES = {"ThrottlingException", "ServiceUnavailableException", "InternalServerException", "ModelNotReadyException"}


class BedrockLLMProvider(LLMProviderBase):
    """AWS Bedrock LLM provider."""

    def __init__(self, model_id: str, region: str, timeout: float = Defaults.LLM_TIMEOUT):
        super().__init__(name=f"BedrockLLM({model_id})")
        self.model_id = model_id
        self.region = region
        self.timeout = timeout
        self._llm = None

    def initialize(self) -> None:
        """Initialize Bedrock LLM client."""
        try:
            self._llm = Bedrock(
                model=self.model_id,
                region_name=self.region,
                timeout=self.timeout,
                max_retries=0,
                temperature=0.2,
            )
            self.logger.info("bedrock_llm_initialized", model_id=self.model_id, region=self.region)
        except Exception as e:
            self.logger.error("bedrock_llm_init_failed", error=str(e))
            raise

    def is_available(self) -> bool:
        """Check if Bedrock LLM is available."""
        return self._llm is not None

    def is_transient(self, exc: Exception) -> bool:
        if isinstance(exc, (ReadTimeoutError, ConnectTimeoutError, EndpointConnectionError)):
            return True
        if isinstance(exc, ClientError):
            code = exc.response.get("Error", {}).get("Code", "")
            status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
            return code in _TRANSIENT_CODES or status >= 500
        return False
