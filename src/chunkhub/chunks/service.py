"""Chunk lifecycle: ingest, update, delete and lookup."""

import logging
import uuid
from datetime import datetime
from typing import Any, Sequence

from chunkhub.chunks.dedup import DedupEngine
from chunkhub.chunks.html import html_to_text
from chunkhub.chunks.schemas import Chunk, ChunkCreate, ChunkUpdate, CreatedChunk, as_utc
from chunkhub.concurrency import WorkerPool
from chunkhub.config import DatasetConfig
from chunkhub.constants.ingest import DEFAULT_CHUNK_WEIGHT
from chunkhub.errors import NotFoundFault, QuotaFault, ValidationFault
from chunkhub.interfaces import EmbeddingClient, LexicalIndex, MetadataStore, VectorIndex
from chunkhub.vectorstore.store import point_payload

logger = logging.getLogger(__name__)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO 8601 timestamp, treating naive values as UTC.

    Raises:
        ValidationFault: If the value is not ISO 8601.
    """
    if value is None or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError as e:
        raise ValidationFault(f"Invalid timestamp {value!r}, expected ISO 8601") from e
    return as_utc(parsed)


def _normalize_tracking_id(tracking_id: str | None) -> str | None:
    if tracking_id is None or not tracking_id.strip():
        return None
    return tracking_id


def _check_weight(weight: float | None) -> None:
    if weight is not None and weight < 0:
        raise ValidationFault(f"Chunk weight must be non-negative, got {weight}")


def _plain_text(markup: str) -> str:
    if not markup.strip():
        raise ValidationFault("Chunk content must not be empty")
    plain = html_to_text(markup)
    if not plain:
        raise ValidationFault("Chunk content has no text once markup is removed")
    return plain


class ChunkService:
    """Runs the ingest pipeline and keeps the store and both indexes in step.

    Every write goes to the metadata store first. A failure in a later step is
    compensated where possible; an orphan vector point left behind is detected
    and removed by the dedup engine on a later ingest.
    """

    def __init__(
        self,
        store: MetadataStore,
        vector_index: VectorIndex,
        lexical_index: LexicalIndex,
        embedder: EmbeddingClient,
        dedup: DedupEngine,
        pool: WorkerPool,
    ) -> None:
        self._store = store
        self._vector_index = vector_index
        self._lexical_index = lexical_index
        self._embedder = embedder
        self._dedup = dedup
        self._pool = pool

    # ------------------------------------------------------------------
    # Ingest pipeline steps
    # ------------------------------------------------------------------

    def _validate(self, request: ChunkCreate, config: DatasetConfig) -> datetime | None:
        if not request.chunk_html.strip():
            raise ValidationFault("Chunk content must not be empty")
        _check_weight(request.weight)
        if request.chunk_vector is not None and len(request.chunk_vector) != config.embedding_size:
            raise ValidationFault(
                f"chunk_vector has {len(request.chunk_vector)} dimensions, "
                f"dataset expects {config.embedding_size}"
            )
        return parse_timestamp(request.time_stamp)

    async def _check_quota(self, config: DatasetConfig) -> None:
        if config.chunk_quota <= 0:
            return
        count = await self._pool.run(self._store.count, config.dataset_id)
        if count >= config.chunk_quota:
            raise QuotaFault(
                f"Dataset {config.dataset_id} has reached its quota of {config.chunk_quota} chunks"
            )

    async def _check_tracking_id(
        self, tracking_id: str | None, config: DatasetConfig, owner_id: str | None = None
    ) -> None:
        if tracking_id is None:
            return
        existing = await self._pool.run(
            self._store.get_by_tracking_id, tracking_id, config.dataset_id
        )
        if existing is not None and existing.id != owner_id:
            raise ValidationFault(f"Tracking id {tracking_id!r} is already used in this dataset")

    async def _embed(
        self, plain_content: str, supplied: Sequence[float] | None, config: DatasetConfig
    ) -> list[float]:
        if supplied is not None:
            return list(supplied)
        return await self._embedder.embed(plain_content, config)

    async def _collision_payload(self, chunk: Chunk) -> dict[str, Any]:
        payload = point_payload(chunk)
        duplicates = await self._pool.run(self._store.list_duplicates, chunk.id, chunk.dataset_id)
        if duplicates:
            payload["collision_count"] = len(duplicates)
        return payload

    async def create(self, config: DatasetConfig, request: ChunkCreate) -> CreatedChunk:
        """Ingest one chunk.

        Args:
            config: Resolved configuration of the target dataset.
            request: Chunk content and attributes.

        Returns:
            The stored chunk and whether it was merged as a duplicate.

        Raises:
            ValidationFault: Bad input or a tracking id already in use.
            QuotaFault: The dataset is full. Checked before embedding.
            UpstreamFault: The embedding provider failed.
            ConsistencyFault: The nearest point had no chunk row. Retryable.
        """
        timestamp = self._validate(request, config)
        await self._check_quota(config)

        tracking_id = _normalize_tracking_id(request.tracking_id)
        await self._check_tracking_id(tracking_id, config)

        plain_content = _plain_text(request.chunk_html)
        embedding = await self._embed(plain_content, request.chunk_vector, config)
        root = await self._dedup.detect(embedding, config)

        chunk = Chunk(
            id=str(uuid.uuid4()),
            dataset_id=config.dataset_id,
            tracking_id=tracking_id,
            raw_markup=request.chunk_html,
            plain_content=plain_content,
            link=request.link,
            tag_set=list(request.tag_set),
            metadata=dict(request.metadata),
            timestamp=timestamp,
            weight=request.weight if request.weight is not None else DEFAULT_CHUNK_WEIGHT,
            vector_point_id=None if root is not None else str(uuid.uuid4()),
            author_id=request.author_id,
        )

        if root is not None:
            await self._pool.run(self._store.insert, chunk, root.id)
            await self._pool.run(self._lexical_index.upsert, chunk)
            await self._dedup.record_collision(root, request.author_id)
            logger.info(f"Stored chunk {chunk.id} as duplicate of {root.id}")
            return CreatedChunk(chunk=chunk, duplicate=True)

        await self._pool.run(self._store.insert, chunk)
        try:
            await self._pool.run(
                self._vector_index.upsert,
                chunk.vector_point_id,
                embedding,
                point_payload(chunk),
                config.dataset_id,
            )
        except Exception:
            logger.error(f"Vector write failed for chunk {chunk.id}; removing its row")
            await self._pool.run(self._store.delete, chunk.id, config.dataset_id)
            raise
        await self._pool.run(self._lexical_index.upsert, chunk)

        logger.debug(f"Stored chunk {chunk.id} with point {chunk.vector_point_id}")
        return CreatedChunk(chunk=chunk, duplicate=False)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def get(self, config: DatasetConfig, chunk_id: str) -> Chunk:
        chunk = await self._pool.run(self._store.get_by_id, chunk_id, config.dataset_id)
        if chunk is None:
            raise NotFoundFault(f"Chunk not found: {chunk_id}")
        return chunk

    async def get_by_tracking_id(self, config: DatasetConfig, tracking_id: str) -> Chunk:
        chunk = await self._pool.run(self._store.get_by_tracking_id, tracking_id, config.dataset_id)
        if chunk is None:
            raise NotFoundFault(f"Chunk not found for tracking id: {tracking_id}")
        return chunk

    async def get_many(self, config: DatasetConfig, chunk_ids: Sequence[str]) -> list[Chunk]:
        """Chunks in request order. Unknown ids are skipped."""
        chunks = await self._pool.run(self._store.get_by_ids, list(chunk_ids), config.dataset_id)
        by_id = {chunk.id: chunk for chunk in chunks}
        return [by_id[chunk_id] for chunk_id in chunk_ids if chunk_id in by_id]

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def update(self, config: DatasetConfig, chunk_id: str, request: ChunkUpdate) -> Chunk:
        """Update a chunk by id. See ``_apply_update``."""
        return await self._apply_update(config, await self.get(config, chunk_id), request)

    async def update_by_tracking_id(
        self, config: DatasetConfig, tracking_id: str, request: ChunkUpdate
    ) -> Chunk:
        chunk = await self.get_by_tracking_id(config, tracking_id)
        return await self._apply_update(config, chunk, request)

    async def _apply_update(
        self, config: DatasetConfig, chunk: Chunk, request: ChunkUpdate
    ) -> Chunk:
        """Apply an update, re-embedding a root only when its text changed.

        A duplicate has no point of its own, so updating one never calls the
        embedding provider or writes to the vector index.
        """
        _check_weight(request.weight)
        changes: dict[str, Any] = {}

        if request.chunk_html is not None:
            changes["raw_markup"] = request.chunk_html
            changes["plain_content"] = _plain_text(request.chunk_html)
        if request.time_stamp is not None:
            changes["timestamp"] = parse_timestamp(request.time_stamp)
        if request.weight is not None:
            changes["weight"] = request.weight
        if request.link is not None:
            changes["link"] = request.link
        if request.tag_set is not None:
            changes["tag_set"] = list(request.tag_set)
        if request.metadata is not None:
            changes["metadata"] = dict(request.metadata)

        tracking_id = _normalize_tracking_id(request.tracking_id)
        if tracking_id is not None and tracking_id != chunk.tracking_id:
            await self._check_tracking_id(tracking_id, config, owner_id=chunk.id)
            changes["tracking_id"] = tracking_id

        updated = chunk.model_copy(update=changes)

        vector: list[float] | None = None
        if not updated.is_duplicate:
            if updated.plain_content != chunk.plain_content:
                vector = await self._embedder.embed(updated.plain_content, config)
            else:
                vector = await self._pool.run(
                    self._vector_index.get_vector, updated.vector_point_id, config.dataset_id
                )
                if vector is None:
                    logger.warning(f"Point of chunk {chunk.id} is missing; re-embedding")
                    vector = await self._embedder.embed(updated.plain_content, config)

        await self._pool.run(self._store.update, updated)
        await self._pool.run(self._lexical_index.upsert, updated)

        if vector is not None:
            await self._pool.run(
                self._vector_index.upsert,
                updated.vector_point_id,
                vector,
                await self._collision_payload(updated),
                config.dataset_id,
            )

        return updated

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete(self, config: DatasetConfig, chunk_id: str) -> None:
        await self._delete(config, await self.get(config, chunk_id))

    async def delete_by_tracking_id(self, config: DatasetConfig, tracking_id: str) -> None:
        await self._delete(config, await self.get_by_tracking_id(config, tracking_id))

    async def _delete(self, config: DatasetConfig, chunk: Chunk) -> None:
        if chunk.is_duplicate:
            await self._pool.run(self._store.delete, chunk.id, config.dataset_id)
            await self._pool.run(self._lexical_index.delete, chunk.id, config.dataset_id)
            logger.debug(f"Deleted duplicate chunk {chunk.id}")
            return

        duplicates = await self._pool.run(self._store.list_duplicates, chunk.id, config.dataset_id)
        if not duplicates:
            await self._pool.run(self._store.delete, chunk.id, config.dataset_id)
            await self._pool.run(self._lexical_index.delete, chunk.id, config.dataset_id)
            await self._pool.run(
                self._vector_index.delete, chunk.vector_point_id, config.dataset_id
            )
            logger.debug(f"Deleted chunk {chunk.id} and point {chunk.vector_point_id}")
            return

        await self._reroot(config, chunk, duplicates)

    async def _reroot(self, config: DatasetConfig, root: Chunk, duplicates: list[Chunk]) -> None:
        """Delete a root that has duplicates, promoting the newest duplicate.

        The successor's point is written before the metadata transaction and
        removed again if that transaction fails, so no step leaves the group
        without a point.
        """
        successor = duplicates[0]
        vector = await self._embedder.embed(successor.plain_content, config)

        new_point_id = str(uuid.uuid4())
        promoted_preview = successor.model_copy(update={"vector_point_id": new_point_id})
        payload = point_payload(promoted_preview)
        if len(duplicates) > 1:
            payload["collision_count"] = len(duplicates) - 1

        await self._pool.run(
            self._vector_index.upsert, new_point_id, vector, payload, config.dataset_id
        )
        try:
            await self._pool.run(
                self._store.promote, root.id, successor.id, new_point_id, config.dataset_id
            )
        except Exception:
            logger.error(f"Promoting {successor.id} failed; removing point {new_point_id}")
            await self._pool.run(self._vector_index.delete, new_point_id, config.dataset_id)
            raise

        await self._pool.run(self._lexical_index.delete, root.id, config.dataset_id)
        await self._pool.run(self._vector_index.delete, root.vector_point_id, config.dataset_id)
        logger.info(
            f"Deleted root chunk {root.id}; {successor.id} now roots "
            f"{len(duplicates) - 1} remaining duplicate(s)"
        )
