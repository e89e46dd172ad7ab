"""ChromaDB vector index implementation."""

import gc
import json
import logging
import re
from pathlib import Path
from typing import Any, Sequence

import chromadb
import numpy as np
from chromadb.config import Settings

from chunkhub.chunks.schemas import Chunk, ChunkFilters
from chunkhub.errors import ValidationFault
from chunkhub.interfaces import Hit, VectorIndex

logger = logging.getLogger(__name__)

_COLLECTION_PREFIX = "chunks-"
_INVALID_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_-]")
TAG_KEY_PREFIX = "tag:"


def point_payload(chunk: Chunk) -> dict[str, Any]:
    """Denormalized filter payload stored with a chunk's point.

    Chroma metadata values must be scalars and cannot be None, so tags become
    one boolean key each and absent fields are omitted.
    """
    payload: dict[str, Any] = {
        "chunk_id": chunk.id,
        "weight": chunk.weight,
        "metadata_json": json.dumps(chunk.metadata, sort_keys=True),
    }
    if chunk.link is not None:
        payload["link"] = chunk.link
    if chunk.timestamp is not None:
        payload["timestamp"] = chunk.timestamp.timestamp()
    if chunk.author_id is not None:
        payload["author_id"] = chunk.author_id
    for tag in chunk.tag_set:
        payload[f"{TAG_KEY_PREFIX}{tag}"] = True
    return payload


def build_where(filters: ChunkFilters) -> dict[str, Any] | None:
    """Translate indexable filters into a Chroma ``where`` clause.

    Metadata substring filters have no Chroma equivalent and are applied by
    the caller after the query.
    """
    conditions: list[dict[str, Any]] = []

    if filters.links:
        conditions.append({"link": {"$in": list(filters.links)}})

    if filters.tags:
        tag_conditions = [{f"{TAG_KEY_PREFIX}{tag}": True} for tag in filters.tags]
        if len(tag_conditions) == 1:
            conditions.append(tag_conditions[0])
        else:
            conditions.append({"$or": tag_conditions})

    if filters.time_range is not None:
        if filters.time_range.start is not None:
            conditions.append({"timestamp": {"$gte": filters.time_range.start.timestamp()}})
        if filters.time_range.end is not None:
            conditions.append({"timestamp": {"$lte": filters.time_range.end.timestamp()}})

    if not conditions:
        return None
    if len(conditions) == 1:
        return conditions[0]
    return {"$and": conditions}


def _matches_metadata(filters: ChunkFilters, payload: dict[str, Any] | None) -> bool:
    if not filters.metadata:
        return True
    if not payload:
        return False
    return filters.matches_metadata(json.loads(payload.get("metadata_json", "{}")))


class ChromaVectorIndex(VectorIndex):
    """Vector index backed by ChromaDB, one cosine collection per dataset.

    Scores are cosine similarities (``1 - distance``), so higher is better and
    the duplicate threshold compares directly against them.
    """

    def __init__(self, persist_path: Path) -> None:
        """Initialize the index with persistent storage.

        Args:
            persist_path: Directory path for ChromaDB persistence.
        """
        self._client = chromadb.PersistentClient(
            path=str(persist_path),
            settings=Settings(anonymized_telemetry=False),
        )
        self._collections: dict[str, chromadb.Collection] = {}

    @staticmethod
    def collection_name(dataset_id: str) -> str:
        """Chroma-safe collection name for a dataset."""
        return _COLLECTION_PREFIX + _INVALID_NAME_CHARS.sub("_", dataset_id) + "-v"

    def _collection(self, dataset_id: str) -> chromadb.Collection:
        collection = self._collections.get(dataset_id)
        if collection is None:
            collection = self._client.get_or_create_collection(
                name=self.collection_name(dataset_id),
                metadata={"hnsw:space": "cosine"},
            )
            self._collections[dataset_id] = collection
        return collection

    def upsert(
        self, point_id: str, vector: Sequence[float], payload: dict[str, Any], dataset_id: str
    ) -> None:
        collection = self._collection(dataset_id)
        # Chroma merges metadata on upsert; delete first so stale tag keys go away.
        collection.delete(ids=[point_id])
        collection.add(
            ids=[point_id],
            embeddings=[list(vector)],
            metadatas=[payload],
        )

    def delete(self, point_id: str, dataset_id: str) -> None:
        self._collection(dataset_id).delete(ids=[point_id])

    def _query(
        self,
        vector: Sequence[float],
        n_results: int,
        dataset_id: str,
        where: dict[str, Any] | None = None,
        include_metadata: bool = False,
    ) -> tuple[list[str], list[float], list[dict[str, Any] | None]]:
        collection = self._collection(dataset_id)
        total = collection.count()
        n_results = min(n_results, total)
        if n_results <= 0:
            return [], [], []

        include = ["distances", "metadatas"] if include_metadata else ["distances"]
        result = collection.query(
            query_embeddings=[list(vector)],
            n_results=n_results,
            where=where,
            include=include,  # type: ignore[arg-type]
        )
        ids = list(result["ids"][0]) if result["ids"] else []
        distances = list(result["distances"][0]) if result.get("distances") else []
        metadatas: list[dict[str, Any] | None]
        if include_metadata and result.get("metadatas"):
            metadatas = list(result["metadatas"][0])  # type: ignore[arg-type]
        else:
            metadatas = [None] * len(ids)
        return ids, [1.0 - float(d) for d in distances], metadatas

    def top1_unfiltered(self, vector: Sequence[float], dataset_id: str) -> Hit | None:
        ids, scores, _ = self._query(vector, 1, dataset_id)
        if not ids:
            return None
        return ids[0], scores[0]

    def search(
        self, vector: Sequence[float], filters: ChunkFilters, limit: int, dataset_id: str
    ) -> list[Hit]:
        where = build_where(filters)

        if not filters.metadata:
            ids, scores, _ = self._query(vector, limit, dataset_id, where=where)
            return list(zip(ids, scores))

        # Metadata substring filters: rank every candidate, then scan.
        candidate_count = self._collection(dataset_id).count()
        ids, scores, metadatas = self._query(
            vector, candidate_count, dataset_id, where=where, include_metadata=True
        )
        hits = [
            (point_id, score)
            for point_id, score, payload in zip(ids, scores, metadatas)
            if _matches_metadata(filters, payload)
        ]
        return hits[:limit]

    def count(self, filters: ChunkFilters, dataset_id: str) -> int:
        collection = self._collection(dataset_id)
        where = build_where(filters)

        if where is None and not filters.metadata:
            return collection.count()

        include = ["metadatas"] if filters.metadata else []
        result = collection.get(where=where, include=include)  # type: ignore[arg-type]
        if not filters.metadata:
            return len(result["ids"])
        metadatas = result.get("metadatas") or []
        return sum(1 for payload in metadatas if _matches_metadata(filters, payload))

    def get_vector(self, point_id: str, dataset_id: str) -> list[float] | None:
        result = self._collection(dataset_id).get(ids=[point_id], include=["embeddings"])
        embeddings = result.get("embeddings")
        if embeddings is None or len(embeddings) == 0:
            return None
        return [float(x) for x in embeddings[0]]

    def set_payload(self, point_id: str, payload: dict[str, Any], dataset_id: str) -> None:
        collection = self._collection(dataset_id)
        existing = collection.get(ids=[point_id], include=["metadatas"])
        if not existing["ids"]:
            logger.warning(f"Cannot set payload on missing point {point_id}")
            return
        merged = dict(existing["metadatas"][0] or {})  # type: ignore[index]
        merged.update(payload)
        collection.update(ids=[point_id], metadatas=[merged])

    def recommend(
        self, positive_point_ids: Sequence[str], dataset_id: str, dim: int, limit: int
    ) -> list[Hit]:
        if not positive_point_ids:
            return []

        collection = self._collection(dataset_id)
        result = collection.get(ids=list(positive_point_ids), include=["embeddings"])
        embeddings = result.get("embeddings")
        if embeddings is None or len(embeddings) == 0:
            return []

        centroid = np.mean(np.asarray(embeddings, dtype=np.float64), axis=0)
        if centroid.shape[0] != dim:
            raise ValidationFault(
                f"Stored vectors have length {centroid.shape[0]}, expected {dim}"
            )

        excluded = set(positive_point_ids)
        ids, scores, _ = self._query(centroid.tolist(), limit + len(excluded), dataset_id)
        hits = [
            (point_id, score) for point_id, score in zip(ids, scores) if point_id not in excluded
        ]
        return hits[:limit]

    def close(self) -> None:
        """Release the client and its file handles."""
        self._collections.clear()
        self._client = None  # type: ignore[assignment]
        gc.collect()
