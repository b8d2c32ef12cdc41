"""Service layer: provider adapters, prompts and the knowledge base."""

from .knowledge import DocumentationKnowledgeBase, RetrievalCapabilities
from .prompts import PromptBuilder, PromptBuilderConfig
from .provider import (
    LangChainProviderAdapter,
    OfflineProviderAdapter,
    ProviderAdapter,
    build_provider_adapter,
)

__all__ = [
    "DocumentationKnowledgeBase",
    "LangChainProviderAdapter",
    "OfflineProviderAdapter",
    "PromptBuilder",
    "PromptBuilderConfig",
    "ProviderAdapter",
    "RetrievalCapabilities",
    "build_provider_adapter",
]
