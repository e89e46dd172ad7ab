"""Shared pytest fixtures for all tests.

These fixtures properly clean up resources to prevent file descriptor leaks.
"""

import gc
import math
import re
import time
import zlib
from pathlib import Path
from typing import Sequence

import pytest

from chunkhub.chunks.dedup import DedupEngine
from chunkhub.chunks.schemas import Dataset
from chunkhub.chunks.service import ChunkService
from chunkhub.chunks.store import SqliteMetadataStore
from chunkhub.concurrency import WorkerPool
from chunkhub.config import Config, DatasetConfig, resolve_dataset_config
from chunkhub.db.connection import Database
from chunkhub.db.migrations import run_migrations
from chunkhub.interfaces import EmbeddingClient, Reranker
from chunkhub.search.fts import Fts5LexicalIndex
from chunkhub.search.recommend import RecommendationEngine
from chunkhub.search.service import HybridRanker
from chunkhub.vectorstore.store import ChromaVectorIndex

TEST_EMBEDDING_SIZE = 256

_WORD_RE = re.compile(r"\w+")


def bag_of_words(text: str, dim: int = TEST_EMBEDDING_SIZE) -> list[float]:
    """Unit-length hashed bag-of-words vector.

    Identical texts embed identically (cosine 1.0) and texts with no shared
    words are close to orthogonal.
    """
    vector = [0.0] * dim
    for word in _WORD_RE.findall(text.lower()):
        vector[zlib.crc32(word.encode("utf-8")) % dim] += 1.0
    norm = math.sqrt(sum(x * x for x in vector))
    if norm == 0:
        vector[0] = 1.0
        return vector
    return [x / norm for x in vector]


class FakeEmbeddingClient(EmbeddingClient):
    """Deterministic embedder that records every text it was asked to embed."""

    def __init__(self) -> None:
        self.calls: list[str] = []

    async def embed(self, text: str, config: DatasetConfig) -> list[float]:
        self.calls.append(text)
        return bag_of_words(text, config.embedding_size)


class FakeReranker(Reranker):
    """Scores documents by how many query words they contain."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, list[str], str]] = []

    def rerank(self, query: str, documents: Sequence[str], model_name: str) -> list[float]:
        self.calls.append((query, list(documents), model_name))
        query_words = set(_WORD_RE.findall(query.lower()))
        return [
            float(len(query_words & set(_WORD_RE.findall(document.lower()))))
            for document in documents
        ]


@pytest.fixture(autouse=True)
def cleanup_after_test():
    """Clean up resources after each test to prevent file descriptor leaks.

    This runs automatically after every test to help garbage collect
    any lingering ChromaDB or SQLite connections.
    """
    yield
    # Force garbage collection to release file handles
    gc.collect()


@pytest.fixture
def non_utc_host(monkeypatch):
    """Run the test with the process clock set to a zone west of UTC."""
    monkeypatch.setenv("TZ", "America/New_York")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()


@pytest.fixture
def temp_db(tmp_path: Path):
    """Create a temporary migrated database that cleans up properly."""
    db = Database(tmp_path / "test.db")
    run_migrations(db)
    yield db
    db.close()
    gc.collect()


@pytest.fixture
def temp_vector_index(tmp_path: Path):
    """Create a temporary Chroma index that cleans up properly."""
    index_path = tmp_path / "index"
    index_path.mkdir()
    index = ChromaVectorIndex(index_path)
    yield index
    index.close()
    gc.collect()


@pytest.fixture
def pool():
    pool = WorkerPool(max_workers=4)
    yield pool
    pool.shutdown()


@pytest.fixture
def store(temp_db: Database) -> SqliteMetadataStore:
    return SqliteMetadataStore(temp_db)


@pytest.fixture
def lexical_index(temp_db: Database) -> Fts5LexicalIndex:
    return Fts5LexicalIndex(temp_db)


@pytest.fixture
def embedder() -> FakeEmbeddingClient:
    return FakeEmbeddingClient()


@pytest.fixture
def reranker() -> FakeReranker:
    return FakeReranker()


@pytest.fixture
def settings(tmp_path: Path) -> Config:
    return Config(data_dir=tmp_path)


@pytest.fixture
def dataset(store: SqliteMetadataStore) -> Dataset:
    """A dataset row sized for the test embedder."""
    return store.create_dataset(
        Dataset(
            id="ds-test",
            name="Test dataset",
            configuration={"embedding_size": TEST_EMBEDDING_SIZE},
        )
    )


@pytest.fixture
def dataset_config(settings: Config, dataset: Dataset) -> DatasetConfig:
    return resolve_dataset_config(
        settings, dataset.id, overrides=dataset.configuration, chunk_quota=dataset.chunk_quota
    )


@pytest.fixture
def dedup(temp_vector_index, store, pool) -> DedupEngine:
    return DedupEngine(temp_vector_index, store, pool)


@pytest.fixture
def chunk_service(store, temp_vector_index, lexical_index, embedder, dedup, pool) -> ChunkService:
    return ChunkService(
        store=store,
        vector_index=temp_vector_index,
        lexical_index=lexical_index,
        embedder=embedder,
        dedup=dedup,
        pool=pool,
    )


@pytest.fixture
def hybrid_ranker(
    store, temp_vector_index, lexical_index, embedder, reranker, pool
) -> HybridRanker:
    return HybridRanker(
        store=store,
        vector_index=temp_vector_index,
        lexical_index=lexical_index,
        embedder=embedder,
        reranker=reranker,
        pool=pool,
    )


@pytest.fixture
def recommender(store, temp_vector_index, pool) -> RecommendationEngine:
    return RecommendationEngine(store, temp_vector_index, pool)
