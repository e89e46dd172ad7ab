"""Vector index module for semantic search."""

from chunkhub.vectorstore.store import ChromaVectorIndex, point_payload

__all__ = ["ChromaVectorIndex", "point_payload"]
