"""Recommendations from positive example chunks."""

import logging
from typing import Sequence

from chunkhub.chunks.schemas import ScoredResult
from chunkhub.concurrency import WorkerPool
from chunkhub.config import DatasetConfig
from chunkhub.constants.search import PAGE_SIZE
from chunkhub.errors import ConsistencyFault, NotFoundFault, ValidationFault
from chunkhub.interfaces import MetadataStore, VectorIndex

logger = logging.getLogger(__name__)


class RecommendationEngine:
    """Finds chunks similar to a set of positive examples.

    Duplicates have no point of their own, so a duplicate among the positives
    stands in for its root's point, and the root is excluded from the output
    along with the positives themselves.
    """

    def __init__(self, store: MetadataStore, vector_index: VectorIndex, pool: WorkerPool) -> None:
        self._store = store
        self._vector_index = vector_index
        self._pool = pool

    async def recommend(
        self,
        positive_ids: Sequence[str],
        config: DatasetConfig,
        limit: int = PAGE_SIZE,
    ) -> list[ScoredResult]:
        """Recommend chunks near the positive examples.

        Args:
            positive_ids: Chunk ids the caller liked.
            config: Resolved configuration of the dataset.
            limit: Maximum number of results.

        Returns:
            Results best first, never containing a positive or its root.

        Raises:
            ValidationFault: If no positive ids are given.
            NotFoundFault: If a positive id does not exist.
            ConsistencyFault: If none of the returned points has a chunk row.
        """
        wanted = list(dict.fromkeys(positive_ids))
        if not wanted:
            raise ValidationFault("At least one positive chunk id is required")

        positives = await self._pool.run(self._store.get_by_ids, wanted, config.dataset_id)
        found = {chunk.id for chunk in positives}
        missing = [chunk_id for chunk_id in wanted if chunk_id not in found]
        if missing:
            raise NotFoundFault(f"Chunk not found: {missing[0]}")

        excluded_chunks = set(found)
        point_ids: list[str] = []
        for chunk in positives:
            point_id = chunk.vector_point_id
            if point_id is None:
                root_id = await self._pool.run(self._store.root_of, chunk.id, config.dataset_id)
                root = (
                    await self._pool.run(self._store.get_by_id, root_id, config.dataset_id)
                    if root_id is not None
                    else None
                )
                if root is None or root.vector_point_id is None:
                    logger.warning(f"Duplicate {chunk.id} has no root point; skipping it")
                    continue
                excluded_chunks.add(root.id)
                point_id = root.vector_point_id
            if point_id not in point_ids:
                point_ids.append(point_id)

        if not point_ids:
            return []

        hits = await self._pool.run(
            self._vector_index.recommend,
            point_ids,
            config.dataset_id,
            config.embedding_size,
            limit,
        )
        if not hits:
            return []

        resolved = await self._pool.run(
            self._store.get_by_point_ids, [point_id for point_id, _ in hits], config.dataset_id
        )
        if not resolved:
            logger.warning(
                f"None of {len(hits)} recommended points in dataset {config.dataset_id} "
                "has a chunk row; deleting them"
            )
            for point_id, _ in hits:
                await self._pool.run(self._vector_index.delete, point_id, config.dataset_id)
            raise ConsistencyFault("Data inconsistency between vector index and store, try again")

        by_point = {chunk.vector_point_id: chunk for chunk in resolved}
        results: list[ScoredResult] = []
        for point_id, score in hits:
            chunk = by_point.get(point_id)
            if chunk is None or chunk.id in excluded_chunks:
                continue
            results.append(ScoredResult(chunk=chunk, score=score, rank=len(results) + 1))
        return results
