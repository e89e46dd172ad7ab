"""FastAPI dependency injection functions."""

from functools import lru_cache

from fastapi import Depends

from chunkhub.chunks.datasets import DatasetService
from chunkhub.chunks.dedup import DedupEngine
from chunkhub.chunks.service import ChunkService
from chunkhub.chunks.store import SqliteMetadataStore
from chunkhub.concurrency import WorkerPool
from chunkhub.config import Config, DatasetConfig, load_settings
from chunkhub.db.connection import Database
from chunkhub.db.migrations import run_migrations
from chunkhub.interfaces import EmbeddingClient, Reranker
from chunkhub.llm.embeddings import LiteLLMEmbeddingClient
from chunkhub.llm.reranker import CrossEncoderReranker
from chunkhub.search.fts import Fts5LexicalIndex
from chunkhub.search.recommend import RecommendationEngine
from chunkhub.search.service import HybridRanker
from chunkhub.vectorstore.store import ChromaVectorIndex


@lru_cache
def get_settings() -> Config:
    """Get cached application settings."""
    return load_settings()


_db_instance: Database | None = None


def get_db() -> Database:
    """Get database connection with migrations applied."""
    global _db_instance

    settings = get_settings()

    # Check if cached connection is stale (db file was deleted)
    if _db_instance is not None and not settings.db_path.exists():
        _db_instance.close()
        _db_instance = None

    if _db_instance is None:
        _db_instance = Database(settings.db_path)
        run_migrations(_db_instance)
    return _db_instance


def _reset_db_instance() -> None:
    """Reset database instance (for testing only)."""
    global _db_instance
    if _db_instance is not None:
        _db_instance.close()
        _db_instance = None


_vector_index_instance: ChromaVectorIndex | None = None


def get_vector_index() -> ChromaVectorIndex:
    """Get the vector index instance."""
    global _vector_index_instance
    if _vector_index_instance is None:
        settings = get_settings()
        settings.index_path.mkdir(parents=True, exist_ok=True)
        _vector_index_instance = ChromaVectorIndex(settings.index_path)
    return _vector_index_instance


def _reset_vector_index_instance() -> None:
    """Reset vector index instance (for testing only)."""
    global _vector_index_instance
    if _vector_index_instance is not None:
        _vector_index_instance.close()
        _vector_index_instance = None


_pool_instance: WorkerPool | None = None


def get_pool() -> WorkerPool:
    """Get the worker pool for blocking store calls."""
    global _pool_instance
    if _pool_instance is None:
        _pool_instance = WorkerPool(get_settings().store.worker_threads)
    return _pool_instance


def shutdown_pool() -> None:
    """Shut down the worker pool, if one was created."""
    global _pool_instance
    if _pool_instance is not None:
        _pool_instance.shutdown()
        _pool_instance = None


_embedder_instance: EmbeddingClient | None = None


def get_embedder() -> EmbeddingClient:
    """Get embedding client instance."""
    global _embedder_instance
    if _embedder_instance is None:
        settings = get_settings()
        _embedder_instance = LiteLLMEmbeddingClient(
            api_key=settings.embedding_api_key,
            api_base=settings.embedding_api_base,
        )
    return _embedder_instance


_reranker_instance: Reranker | None = None


def get_reranker() -> Reranker:
    """Get cross-encoder reranker instance."""
    global _reranker_instance
    if _reranker_instance is None:
        _reranker_instance = CrossEncoderReranker()
    return _reranker_instance


def _reset_model_instances() -> None:
    """Reset embedding and reranker instances (for testing only)."""
    global _embedder_instance, _reranker_instance
    _embedder_instance = None
    _reranker_instance = None


# =============================================================================
# Services
# =============================================================================


def get_metadata_store(db: Database = Depends(get_db)) -> SqliteMetadataStore:
    return SqliteMetadataStore(db)


def get_dataset_service(
    store: SqliteMetadataStore = Depends(get_metadata_store),
    settings: Config = Depends(get_settings),
    pool: WorkerPool = Depends(get_pool),
) -> DatasetService:
    """Get DatasetService instance."""
    return DatasetService(store, settings, pool)


async def get_dataset_config(
    dataset_id: str,
    datasets: DatasetService = Depends(get_dataset_service),
) -> DatasetConfig:
    """Resolve the configuration of the dataset named in the path.

    Raises:
        NotFoundFault: If the dataset does not exist.
    """
    return await datasets.config_for(dataset_id)


def get_chunk_service(
    db: Database = Depends(get_db),
    store: SqliteMetadataStore = Depends(get_metadata_store),
    vector_index: ChromaVectorIndex = Depends(get_vector_index),
    embedder: EmbeddingClient = Depends(get_embedder),
    pool: WorkerPool = Depends(get_pool),
) -> ChunkService:
    """Get ChunkService instance."""
    return ChunkService(
        store=store,
        vector_index=vector_index,
        lexical_index=Fts5LexicalIndex(db),
        embedder=embedder,
        dedup=DedupEngine(vector_index, store, pool),
        pool=pool,
    )


def get_hybrid_ranker(
    db: Database = Depends(get_db),
    store: SqliteMetadataStore = Depends(get_metadata_store),
    vector_index: ChromaVectorIndex = Depends(get_vector_index),
    embedder: EmbeddingClient = Depends(get_embedder),
    reranker: Reranker = Depends(get_reranker),
    pool: WorkerPool = Depends(get_pool),
) -> HybridRanker:
    """Get HybridRanker instance."""
    return HybridRanker(
        store=store,
        vector_index=vector_index,
        lexical_index=Fts5LexicalIndex(db),
        embedder=embedder,
        reranker=reranker,
        pool=pool,
    )


def get_recommendation_engine(
    store: SqliteMetadataStore = Depends(get_metadata_store),
    vector_index: ChromaVectorIndex = Depends(get_vector_index),
    pool: WorkerPool = Depends(get_pool),
) -> RecommendationEngine:
    """Get RecommendationEngine instance."""
    return RecommendationEngine(store, vector_index, pool)
