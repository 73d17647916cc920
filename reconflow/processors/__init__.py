"""Document processing modules."""

from openai import AsyncOpenAI

from ..utils.config import get_settings
from .base import BaseProcessor, ProcessorConfig, ProcessorRegistry
from .pattern_processor import PatternProcessor
from .llm_processor import LLMProcessor


def create_registry(use_llm: bool = None, llm_client=None) -> ProcessorRegistry:
    """Factory function to create a registry with the configured processors.

    The pattern processor is always registered. When the LLM processor is
    enabled and no llm_client is provided, an OpenAI client pointing at the
    local Ollama instance is created.
    """
    settings = get_settings()
    registry = ProcessorRegistry()
    registry.register(PatternProcessor())

    if use_llm is None:
        use_llm = settings.LLM_ENABLED
    if use_llm:
        if llm_client is None:
            llm_client = AsyncOpenAI(base_url=settings.OLLAMA_BASE_URL, api_key=settings.LLM_API_KEY)
        registry.register(LLMProcessor(llm_client))

    return registry


__all__ = [
    "BaseProcessor",
    "ProcessorConfig",
    "ProcessorRegistry",
    "PatternProcessor",
    "LLMProcessor",
    "create_registry",
]
