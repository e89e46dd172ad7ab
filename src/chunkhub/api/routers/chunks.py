"""Chunk ingest, lookup, search and recommendation endpoints."""

from fastapi import APIRouter, Depends, status

from chunkhub.api.deps import (
    get_chunk_service,
    get_dataset_config,
    get_hybrid_ranker,
    get_recommendation_engine,
)
from chunkhub.chunks.schemas import (
    Chunk,
    ChunkCreate,
    ChunkIdsRequest,
    ChunkUpdate,
    CreatedChunk,
    RecommendRequest,
    ScoredResult,
    SearchPage,
    SearchRequest,
)
from chunkhub.chunks.service import ChunkService
from chunkhub.config import DatasetConfig
from chunkhub.search.recommend import RecommendationEngine
from chunkhub.search.service import HybridRanker

router = APIRouter(prefix="/api/datasets/{dataset_id}/chunks", tags=["chunks"])


@router.post("", response_model=CreatedChunk, status_code=status.HTTP_201_CREATED)
async def create_chunk(
    data: ChunkCreate,
    config: DatasetConfig = Depends(get_dataset_config),
    service: ChunkService = Depends(get_chunk_service),
) -> CreatedChunk:
    """Ingest a chunk.

    Near-identical content is stored as a duplicate of the existing chunk and
    reported with ``duplicate: true``.
    """
    return await service.create(config, data)


@router.post("/search", response_model=SearchPage)
async def search_chunks(
    data: SearchRequest,
    config: DatasetConfig = Depends(get_dataset_config),
    ranker: HybridRanker = Depends(get_hybrid_ranker),
) -> SearchPage:
    """Search chunks in semantic, fulltext or hybrid mode."""
    return await ranker.search(
        data.query,
        data.search_type,
        data.filters,
        data.page,
        config,
        weights=data.weights,
        cross_encoder=data.cross_encoder,
        recency_bias=data.date_bias,
    )


@router.post("/get_many", response_model=list[Chunk])
async def get_chunks(
    data: ChunkIdsRequest,
    config: DatasetConfig = Depends(get_dataset_config),
    service: ChunkService = Depends(get_chunk_service),
) -> list[Chunk]:
    """Fetch several chunks at once. Ids not in the dataset are left out."""
    return await service.get_many(config, data.ids)


@router.post("/recommend", response_model=list[ScoredResult])
async def recommend_chunks(
    data: RecommendRequest,
    config: DatasetConfig = Depends(get_dataset_config),
    engine: RecommendationEngine = Depends(get_recommendation_engine),
) -> list[ScoredResult]:
    """Recommend chunks similar to the given positive examples."""
    return await engine.recommend(data.positive_chunk_ids, config, limit=data.limit)


@router.get("/tracking_id/{tracking_id}", response_model=Chunk)
async def get_chunk_by_tracking_id(
    tracking_id: str,
    config: DatasetConfig = Depends(get_dataset_config),
    service: ChunkService = Depends(get_chunk_service),
) -> Chunk:
    return await service.get_by_tracking_id(config, tracking_id)


@router.put("/tracking_id/{tracking_id}", response_model=Chunk)
async def update_chunk_by_tracking_id(
    tracking_id: str,
    data: ChunkUpdate,
    config: DatasetConfig = Depends(get_dataset_config),
    service: ChunkService = Depends(get_chunk_service),
) -> Chunk:
    return await service.update_by_tracking_id(config, tracking_id, data)


@router.delete("/tracking_id/{tracking_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_chunk_by_tracking_id(
    tracking_id: str,
    config: DatasetConfig = Depends(get_dataset_config),
    service: ChunkService = Depends(get_chunk_service),
) -> None:
    await service.delete_by_tracking_id(config, tracking_id)


@router.get("/{chunk_id}", response_model=Chunk)
async def get_chunk(
    chunk_id: str,
    config: DatasetConfig = Depends(get_dataset_config),
    service: ChunkService = Depends(get_chunk_service),
) -> Chunk:
    """Get a chunk by id."""
    return await service.get(config, chunk_id)


@router.put("/{chunk_id}", response_model=Chunk)
async def update_chunk(
    chunk_id: str,
    data: ChunkUpdate,
    config: DatasetConfig = Depends(get_dataset_config),
    service: ChunkService = Depends(get_chunk_service),
) -> Chunk:
    """Update a chunk. Fields left out keep their stored value.

    Only a chunk that owns a vector point is re-embedded, and only when its
    text changed.
    """
    return await service.update(config, chunk_id, data)


@router.delete("/{chunk_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_chunk(
    chunk_id: str,
    config: DatasetConfig = Depends(get_dataset_config),
    service: ChunkService = Depends(get_chunk_service),
) -> None:
    """Delete a chunk.

    Deleting a chunk that has duplicates promotes the newest duplicate before
    the response is returned.
    """
    await service.delete(config, chunk_id)
