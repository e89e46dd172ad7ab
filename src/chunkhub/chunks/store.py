"""SQLite-backed metadata store for chunk and dataset records."""

import json
import logging
import sqlite3
from datetime import datetime, timezone
from typing import Sequence

from chunkhub.chunks.schemas import Chunk, Dataset
from chunkhub.db.connection import Database
from chunkhub.errors import ValidationFault
from chunkhub.interfaces import MetadataStore

logger = logging.getLogger(__name__)

_CHUNK_COLUMNS = """
    c.id, c.dataset_id, c.tracking_id, c.raw_markup, c.plain_content, c.link,
    c.metadata, c.timestamp, c.weight, c.vector_point_id, c.author_id, c.created_at
"""


def _to_epoch(value: datetime | None) -> float | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def _from_epoch(value: float | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))


class SqliteMetadataStore(MetadataStore):
    """Chunk rows, tags and duplicate groups in SQLite.

    All methods are blocking; call them through the worker pool.
    """

    def __init__(self, db: Database) -> None:
        """Initialize the store.

        Args:
            db: Migrated database connection.
        """
        self._db = db

    # ------------------------------------------------------------------
    # Datasets
    # ------------------------------------------------------------------

    def create_dataset(self, dataset: Dataset) -> Dataset:
        with self._db.transaction():
            self._db.execute(
                """
                INSERT INTO datasets (id, name, configuration, chunk_quota, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    dataset.id,
                    dataset.name,
                    json.dumps(dataset.configuration, sort_keys=True),
                    dataset.chunk_quota,
                    dataset.created_at.isoformat(),
                ),
            )
        return dataset

    def get_dataset(self, dataset_id: str) -> Dataset | None:
        row = self._db.fetchone(
            "SELECT id, name, configuration, chunk_quota, created_at FROM datasets WHERE id = ?",
            (dataset_id,),
        )
        if not row:
            return None
        return Dataset(
            id=row["id"],
            name=row["name"],
            configuration=json.loads(row["configuration"] or "{}"),
            chunk_quota=row["chunk_quota"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _hydrate(self, rows: list[sqlite3.Row]) -> list[Chunk]:
        """Build Chunk models from rows, loading tags in one query."""
        if not rows:
            return []

        ids = [row["id"] for row in rows]
        tags_by_chunk: dict[str, list[str]] = {chunk_id: [] for chunk_id in ids}
        tag_rows = self._db.fetchall(
            f"""
            SELECT chunk_id, tag FROM chunk_tags
            WHERE chunk_id IN ({_placeholders(len(ids))})
            ORDER BY chunk_id, position
            """,
            tuple(ids),
        )
        for tag_row in tag_rows:
            tags_by_chunk[tag_row["chunk_id"]].append(tag_row["tag"])

        return [
            Chunk(
                id=row["id"],
                dataset_id=row["dataset_id"],
                tracking_id=row["tracking_id"],
                raw_markup=row["raw_markup"],
                plain_content=row["plain_content"],
                link=row["link"],
                tag_set=tags_by_chunk[row["id"]],
                metadata=json.loads(row["metadata"] or "{}"),
                timestamp=_from_epoch(row["timestamp"]),
                weight=row["weight"],
                vector_point_id=row["vector_point_id"],
                author_id=row["author_id"],
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]

    def get_by_id(self, chunk_id: str, dataset_id: str) -> Chunk | None:
        rows = self._db.fetchall(
            f"SELECT {_CHUNK_COLUMNS} FROM chunks c WHERE c.id = ? AND c.dataset_id = ?",
            (chunk_id, dataset_id),
        )
        chunks = self._hydrate(rows)
        return chunks[0] if chunks else None

    def get_by_tracking_id(self, tracking_id: str, dataset_id: str) -> Chunk | None:
        rows = self._db.fetchall(
            f"SELECT {_CHUNK_COLUMNS} FROM chunks c WHERE c.tracking_id = ? AND c.dataset_id = ?",
            (tracking_id, dataset_id),
        )
        chunks = self._hydrate(rows)
        return chunks[0] if chunks else None

    def get_by_point_ids(self, point_ids: Sequence[str], dataset_id: str) -> list[Chunk]:
        if not point_ids:
            return []
        rows = self._db.fetchall(
            f"""
            SELECT {_CHUNK_COLUMNS} FROM chunks c
            WHERE c.dataset_id = ? AND c.vector_point_id IN ({_placeholders(len(point_ids))})
            """,
            (dataset_id, *point_ids),
        )
        return self._hydrate(rows)

    def get_by_ids(self, chunk_ids: Sequence[str], dataset_id: str) -> list[Chunk]:
        if not chunk_ids:
            return []
        rows = self._db.fetchall(
            f"""
            SELECT {_CHUNK_COLUMNS} FROM chunks c
            WHERE c.dataset_id = ? AND c.id IN ({_placeholders(len(chunk_ids))})
            """,
            (dataset_id, *chunk_ids),
        )
        return self._hydrate(rows)

    def count(self, dataset_id: str) -> int:
        row = self._db.fetchone("SELECT COUNT(*) FROM chunks WHERE dataset_id = ?", (dataset_id,))
        return int(row[0]) if row else 0

    def root_of(self, chunk_id: str, dataset_id: str) -> str | None:
        row = self._db.fetchone(
            "SELECT root_chunk_id FROM chunk_collisions WHERE chunk_id = ? AND dataset_id = ?",
            (chunk_id, dataset_id),
        )
        return row["root_chunk_id"] if row else None

    def list_duplicates(self, root_chunk_id: str, dataset_id: str) -> list[Chunk]:
        rows = self._db.fetchall(
            f"""
            SELECT {_CHUNK_COLUMNS} FROM chunks c
            JOIN chunk_collisions cc ON cc.chunk_id = c.id
            WHERE cc.root_chunk_id = ? AND c.dataset_id = ?
            ORDER BY c.created_at DESC, c.rowid DESC
            """,
            (root_chunk_id, dataset_id),
        )
        return self._hydrate(rows)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _write_tags(self, chunk: Chunk) -> None:
        self._db.execute("DELETE FROM chunk_tags WHERE chunk_id = ?", (chunk.id,))
        self._db.executemany(
            "INSERT INTO chunk_tags (chunk_id, dataset_id, position, tag) VALUES (?, ?, ?, ?)",
            [(chunk.id, chunk.dataset_id, i, tag) for i, tag in enumerate(chunk.tag_set)],
        )

    def _raise_for_integrity(self, chunk: Chunk, error: sqlite3.IntegrityError) -> None:
        if "tracking_id" in str(error):
            raise ValidationFault(
                f"Tracking id {chunk.tracking_id!r} is already used in this dataset"
            ) from error
        raise ValidationFault(f"Chunk violates a store constraint: {error}") from error

    def insert(self, chunk: Chunk, root_chunk_id: str | None = None) -> Chunk:
        try:
            with self._db.transaction():
                self._db.execute(
                    """
                    INSERT INTO chunks (
                        id, dataset_id, tracking_id, raw_markup, plain_content, link,
                        metadata, timestamp, weight, vector_point_id, author_id, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        chunk.id,
                        chunk.dataset_id,
                        chunk.tracking_id,
                        chunk.raw_markup,
                        chunk.plain_content,
                        chunk.link,
                        json.dumps(chunk.metadata, sort_keys=True),
                        _to_epoch(chunk.timestamp),
                        chunk.weight,
                        chunk.vector_point_id,
                        chunk.author_id,
                        chunk.created_at.isoformat(),
                    ),
                )
                self._write_tags(chunk)
                if root_chunk_id is not None:
                    self._db.execute(
                        """
                        INSERT INTO chunk_collisions
                            (chunk_id, root_chunk_id, dataset_id, created_at)
                        VALUES (?, ?, ?, ?)
                        """,
                        (chunk.id, root_chunk_id, chunk.dataset_id, chunk.created_at.isoformat()),
                    )
        except sqlite3.IntegrityError as e:
            self._raise_for_integrity(chunk, e)
        return chunk

    def update(self, chunk: Chunk) -> Chunk:
        try:
            with self._db.transaction():
                self._db.execute(
                    """
                    UPDATE chunks SET
                        tracking_id = ?, raw_markup = ?, plain_content = ?, link = ?,
                        metadata = ?, timestamp = ?, weight = ?, vector_point_id = ?
                    WHERE id = ? AND dataset_id = ?
                    """,
                    (
                        chunk.tracking_id,
                        chunk.raw_markup,
                        chunk.plain_content,
                        chunk.link,
                        json.dumps(chunk.metadata, sort_keys=True),
                        _to_epoch(chunk.timestamp),
                        chunk.weight,
                        chunk.vector_point_id,
                        chunk.id,
                        chunk.dataset_id,
                    ),
                )
                self._write_tags(chunk)
        except sqlite3.IntegrityError as e:
            self._raise_for_integrity(chunk, e)
        return chunk

    def delete(self, chunk_id: str, dataset_id: str) -> None:
        with self._db.transaction():
            self._db.execute(
                "DELETE FROM chunks WHERE id = ? AND dataset_id = ?",
                (chunk_id, dataset_id),
            )

    def promote(
        self, old_root_id: str, successor_id: str, new_point_id: str, dataset_id: str
    ) -> Chunk:
        with self._db.transaction():
            self._db.execute(
                """
                UPDATE chunk_collisions SET root_chunk_id = ?
                WHERE root_chunk_id = ? AND dataset_id = ? AND chunk_id != ?
                """,
                (successor_id, old_root_id, dataset_id, successor_id),
            )
            self._db.execute("DELETE FROM chunk_collisions WHERE chunk_id = ?", (successor_id,))
            self._db.execute(
                "DELETE FROM chunks WHERE id = ? AND dataset_id = ?",
                (old_root_id, dataset_id),
            )
            self._db.execute(
                "UPDATE chunks SET vector_point_id = ? WHERE id = ? AND dataset_id = ?",
                (new_point_id, successor_id, dataset_id),
            )

        promoted = self.get_by_id(successor_id, dataset_id)
        if promoted is None:
            raise RuntimeError("Failed to get chunk after promotion")
        logger.info(f"Promoted chunk {successor_id} to root of {old_root_id}'s duplicate group")
        return promoted
