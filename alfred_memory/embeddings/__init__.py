from alfred_memory.embeddings.base import EmbeddingProvider, normalize_embedding
from alfred_memory.embeddings.chain import EmbeddingChain, create_default_chain
from alfred_memory.embeddings.fastembed_provider import FastEmbedModelHandle, FastEmbedProvider
from alfred_memory.embeddings.ollama import OllamaEmbeddingProvider
from alfred_memory.embeddings.voyage import VoyageAIProvider

__all__ = [
    "EmbeddingProvider",
    "EmbeddingChain",
    "FastEmbedModelHandle",
    "FastEmbedProvider",
    "OllamaEmbeddingProvider",
    "VoyageAIProvider",
    "create_default_chain",
    "normalize_embedding",
]
