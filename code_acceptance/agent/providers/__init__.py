"""Model provider implementations."""

from code_acceptance.agent.providers.base import (
    GenerateRequest,
    GenerateResponse,
    ModelInfo,
    ModelPricing,
    ModelProvider,
    ProviderError,
)
from code_acceptance.agent.providers.mock_provider import MockProvider
from code_acceptance.agent.providers.ollama_provider import OllamaProvider
from code_acceptance.agent.providers.openai_provider import OpenAICompatibleProvider
from code_acceptance.agent.providers.registry import ModelCriteria, ProviderRegistry
from code_acceptance.agent.providers.resilient_llm import FallbackModelClient

__all__ = [
    "FallbackModelClient",
    "GenerateRequest",
    "GenerateResponse",
    "MockProvider",
    "ModelCriteria",
    "ModelInfo",
    "ModelPricing",
    "ModelProvider",
    "OllamaProvider",
    "OpenAICompatibleProvider",
    "ProviderError",
    "ProviderRegistry",
]
