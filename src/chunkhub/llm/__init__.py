"""Embedding and re-ranking model clients."""

from chunkhub.llm.embeddings import LiteLLMEmbeddingClient

__all__ = ["LiteLLMEmbeddingClient"]
