"""Semantic duplicate detection on ingest."""

import logging
from typing import Sequence

from chunkhub.chunks.schemas import Chunk, utcnow
from chunkhub.concurrency import WorkerPool
from chunkhub.config import DatasetConfig
from chunkhub.errors import ConsistencyFault
from chunkhub.interfaces import MetadataStore, VectorIndex

logger = logging.getLogger(__name__)


class DedupEngine:
    """Decides whether a new embedding collides with an existing root chunk.

    A collision is the single best match across the whole dataset, ignoring
    every filter, scoring at or above the dataset's duplicate threshold.
    Scores are cosine similarities, so a higher threshold is stricter.
    """

    def __init__(self, vector_index: VectorIndex, store: MetadataStore, pool: WorkerPool) -> None:
        self._vector_index = vector_index
        self._store = store
        self._pool = pool

    async def detect(self, embedding: Sequence[float], config: DatasetConfig) -> Chunk | None:
        """Find the root chunk this embedding duplicates.

        Args:
            embedding: Embedding of the incoming chunk.
            config: Dataset configuration carrying the threshold.

        Returns:
            The colliding root chunk, or None if the content is new.

        Raises:
            ConsistencyFault: If the best match is a point with no chunk row.
                The orphan point is deleted first, so a retry can succeed.
        """
        hit = await self._pool.run(self._vector_index.top1_unfiltered, embedding, config.dataset_id)
        if hit is None:
            return None

        point_id, score = hit
        if score < config.duplicate_threshold:
            return None

        chunks = await self._pool.run(self._store.get_by_point_ids, [point_id], config.dataset_id)
        if not chunks:
            logger.warning(
                f"Point {point_id} in dataset {config.dataset_id} has no chunk row; deleting it"
            )
            await self._pool.run(self._vector_index.delete, point_id, config.dataset_id)
            raise ConsistencyFault("Data inconsistency between vector index and store, try again")

        root = chunks[0]
        logger.info(
            f"Collision in dataset {config.dataset_id}: score {score:.4f} >= "
            f"{config.duplicate_threshold} against chunk {root.id}"
        )
        return root

    async def record_collision(self, root: Chunk, author_id: str | None) -> None:
        """Note a new duplicate on the root's point without touching its vector.

        Call after the duplicate's row is persisted so the count includes it.
        """
        if root.vector_point_id is None:
            return

        duplicates = await self._pool.run(self._store.list_duplicates, root.id, root.dataset_id)
        payload: dict = {
            "collision_count": len(duplicates),
            "last_collision_at": utcnow().timestamp(),
        }
        if author_id is not None:
            payload["author_id"] = author_id

        await self._pool.run(
            self._vector_index.set_payload, root.vector_point_id, payload, root.dataset_id
        )
