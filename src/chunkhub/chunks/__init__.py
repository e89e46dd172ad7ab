"""Chunk records, the metadata store and the ingest lifecycle."""

from chunkhub.chunks.schemas import (
    Chunk,
    ChunkCreate,
    ChunkFilters,
    ChunkUpdate,
    CreatedChunk,
    Dataset,
    ScoredResult,
    SearchMode,
    SearchPage,
    TimeRange,
)

__all__ = [
    "Chunk",
    "ChunkCreate",
    "ChunkFilters",
    "ChunkUpdate",
    "CreatedChunk",
    "Dataset",
    "ScoredResult",
    "SearchMode",
    "SearchPage",
    "TimeRange",
]
