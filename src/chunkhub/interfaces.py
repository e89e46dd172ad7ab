"""Interfaces of the external collaborators used by the ingest and search core.

The vector index, lexical index, metadata store and reranker are blocking;
services reach them through ``chunkhub.concurrency.WorkerPool``. The embedding
client is natively async.
"""

from abc import ABC, abstractmethod
from typing import Any, Sequence

from chunkhub.chunks.schemas import Chunk, ChunkFilters, Dataset
from chunkhub.config import DatasetConfig
from chunkhub.search.query import ParsedQuery

# (point id or chunk id, score); higher scores are better.
Hit = tuple[str, float]


class EmbeddingClient(ABC):
    """Turns text into a dense vector."""

    @abstractmethod
    async def embed(self, text: str, config: DatasetConfig) -> list[float]:
        """Embed text with the dataset's model.

        Raises:
            UpstreamFault: If the provider fails. Not retried internally.
        """
        pass


class VectorIndex(ABC):
    """Nearest-neighbour search and point CRUD, partitioned by dataset."""

    @abstractmethod
    def upsert(
        self, point_id: str, vector: Sequence[float], payload: dict[str, Any], dataset_id: str
    ) -> None:
        """Create or fully replace a point."""
        pass

    @abstractmethod
    def delete(self, point_id: str, dataset_id: str) -> None:
        """Delete a point. Deleting a missing point is not an error."""
        pass

    @abstractmethod
    def top1_unfiltered(self, vector: Sequence[float], dataset_id: str) -> Hit | None:
        """Best match across the whole dataset, or None if it has no points."""
        pass

    @abstractmethod
    def search(
        self, vector: Sequence[float], filters: ChunkFilters, limit: int, dataset_id: str
    ) -> list[Hit]:
        """Filtered nearest neighbours, best first."""
        pass

    @abstractmethod
    def count(self, filters: ChunkFilters, dataset_id: str) -> int:
        """Number of points matching the filters."""
        pass

    @abstractmethod
    def recommend(
        self, positive_point_ids: Sequence[str], dataset_id: str, dim: int, limit: int
    ) -> list[Hit]:
        """Points similar to the positive set, excluding the positives."""
        pass

    @abstractmethod
    def set_payload(self, point_id: str, payload: dict[str, Any], dataset_id: str) -> None:
        """Merge payload keys into a point without touching its vector."""
        pass

    @abstractmethod
    def get_vector(self, point_id: str, dataset_id: str) -> list[float] | None:
        """Stored vector of a point, or None if the point does not exist."""
        pass


class LexicalIndex(ABC):
    """Full-text search over chunk content, partitioned by dataset."""

    @abstractmethod
    def upsert(self, chunk: Chunk) -> None:
        """Index or re-index a chunk's plain content."""
        pass

    @abstractmethod
    def delete(self, chunk_id: str, dataset_id: str) -> None:
        pass

    @abstractmethod
    def search(
        self, query: ParsedQuery, filters: ChunkFilters, limit: int, dataset_id: str
    ) -> list[Hit]:
        """Chunk ids ranked by lexical score, best first."""
        pass

    @abstractmethod
    def count(self, query: ParsedQuery, filters: ChunkFilters, dataset_id: str) -> int:
        pass


class MetadataStore(ABC):
    """Durable chunk and dataset records."""

    @abstractmethod
    def create_dataset(self, dataset: Dataset) -> Dataset:
        pass

    @abstractmethod
    def get_dataset(self, dataset_id: str) -> Dataset | None:
        pass

    @abstractmethod
    def get_by_id(self, chunk_id: str, dataset_id: str) -> Chunk | None:
        pass

    @abstractmethod
    def get_by_tracking_id(self, tracking_id: str, dataset_id: str) -> Chunk | None:
        pass

    @abstractmethod
    def get_by_point_ids(self, point_ids: Sequence[str], dataset_id: str) -> list[Chunk]:
        pass

    @abstractmethod
    def get_by_ids(self, chunk_ids: Sequence[str], dataset_id: str) -> list[Chunk]:
        pass

    @abstractmethod
    def insert(self, chunk: Chunk, root_chunk_id: str | None = None) -> Chunk:
        """Insert a chunk; ``root_chunk_id`` records it as that root's duplicate.

        Raises:
            ValidationFault: If the tracking id is already used in the dataset.
        """
        pass

    @abstractmethod
    def update(self, chunk: Chunk) -> Chunk:
        pass

    @abstractmethod
    def delete(self, chunk_id: str, dataset_id: str) -> None:
        pass

    @abstractmethod
    def count(self, dataset_id: str) -> int:
        pass

    @abstractmethod
    def root_of(self, chunk_id: str, dataset_id: str) -> str | None:
        """Root chunk id of a duplicate, or None if the chunk is not one."""
        pass

    @abstractmethod
    def list_duplicates(self, root_chunk_id: str, dataset_id: str) -> list[Chunk]:
        """Duplicates of a root, most recently created first."""
        pass

    @abstractmethod
    def promote(
        self, old_root_id: str, successor_id: str, new_point_id: str, dataset_id: str
    ) -> Chunk:
        """Delete ``old_root_id`` and make ``successor_id`` the group's root.

        Runs as one transaction: the successor takes ``new_point_id``, loses its
        collision row, and every other duplicate of the old root is re-parented
        to it.
        """
        pass


class Reranker(ABC):
    """Cross-encoder relevance model."""

    @abstractmethod
    def rerank(self, query: str, documents: Sequence[str], model_name: str) -> list[float]:
        """One relevance score per document, higher is better."""
        pass
