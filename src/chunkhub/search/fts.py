"""SQLite FTS5 lexical index over chunk plain content."""

import json
import logging
import re
from typing import Any

from chunkhub.chunks.schemas import Chunk, ChunkFilters
from chunkhub.db.connection import Database
from chunkhub.interfaces import Hit, LexicalIndex
from chunkhub.search.query import ParsedQuery

logger = logging.getLogger(__name__)

# A term the unicode61 tokenizer reduces to nothing would become an empty phrase.
_TOKEN_CHARS = re.compile(r"\w")


def _quote(term: str) -> str:
    return '"' + term.replace('"', '""') + '"'


def _usable(terms: list[str] | None) -> list[str]:
    return [term for term in terms or [] if _TOKEN_CHARS.search(term)]


def build_match_expression(query: ParsedQuery) -> str | None:
    """Build an FTS5 MATCH expression from a parsed query.

    Phrases must all match, negated terms must not, and residual terms are
    OR'ed so any of them contributes to the bm25 score. Returns None when
    nothing positive remains to match on.
    """
    residual = [_quote(t) for t in _usable(query.residual_terms)]
    if not query.has_structure:
        return f"({' OR '.join(residual)})" if residual else None

    phrases = [_quote(p) for p in _usable(query.quote_words)]
    negated = [_quote(t) for t in _usable(query.negated_words)]

    if phrases:
        expression = " AND ".join(phrases)
        if residual:
            # Logically a no-op next to the phrases, but lets residual terms score.
            expression = f"{expression} AND ({' OR '.join(phrases + residual)})"
    elif residual:
        expression = " OR ".join(residual)
    else:
        return None

    expression = f"({expression})"
    for term in negated:
        expression += f" NOT {term}"
    return expression


def _filter_sql(filters: ChunkFilters) -> tuple[str, list[Any]]:
    """SQL conditions for the index-backed filters."""
    clauses: list[str] = []
    params: list[Any] = []

    if filters.links:
        clauses.append(f"c.link IN ({', '.join('?' for _ in filters.links)})")
        params.extend(filters.links)

    if filters.tags:
        clauses.append(
            f"""EXISTS (
                SELECT 1 FROM chunk_tags t
                WHERE t.chunk_id = c.id AND t.tag IN ({', '.join('?' for _ in filters.tags)})
            )"""
        )
        params.extend(filters.tags)

    if filters.time_range is not None:
        if filters.time_range.start is not None:
            clauses.append("c.timestamp >= ?")
            params.append(filters.time_range.start.timestamp())
        if filters.time_range.end is not None:
            clauses.append("c.timestamp <= ?")
            params.append(filters.time_range.end.timestamp())

    sql = "".join(f" AND {clause}" for clause in clauses)
    return sql, params


class Fts5LexicalIndex(LexicalIndex):
    """Lexical index stored in the ``chunks_fts`` table.

    Every chunk is indexed, duplicates included. Scores are negated bm25
    values, so higher is better.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    def upsert(self, chunk: Chunk) -> None:
        with self._db.transaction():
            self._db.execute(
                "DELETE FROM chunks_fts WHERE chunk_id = ? AND dataset_id = ?",
                (chunk.id, chunk.dataset_id),
            )
            self._db.execute(
                "INSERT INTO chunks_fts (content, chunk_id, dataset_id) VALUES (?, ?, ?)",
                (chunk.plain_content, chunk.id, chunk.dataset_id),
            )

    def delete(self, chunk_id: str, dataset_id: str) -> None:
        with self._db.transaction():
            self._db.execute(
                "DELETE FROM chunks_fts WHERE chunk_id = ? AND dataset_id = ?",
                (chunk_id, dataset_id),
            )

    def _rows(
        self, match: str, filters: ChunkFilters, dataset_id: str, limit: int | None
    ) -> list[Hit]:
        filter_sql, filter_params = _filter_sql(filters)
        sql = f"""
            SELECT chunks_fts.chunk_id AS chunk_id,
                   bm25(chunks_fts) AS score,
                   c.metadata AS metadata
            FROM chunks_fts
            JOIN chunks c ON c.id = chunks_fts.chunk_id
            WHERE chunks_fts MATCH ? AND chunks_fts.dataset_id = ?{filter_sql}
            ORDER BY score, chunk_id
        """
        params: list[Any] = [match, dataset_id, *filter_params]

        # Metadata substring filters are a linear scan, so the limit applies after it.
        if limit is not None and not filters.metadata:
            sql += " LIMIT ?"
            params.append(limit)

        hits: list[Hit] = []
        for row in self._db.fetchall(sql, tuple(params)):
            if filters.metadata and not filters.matches_metadata(
                json.loads(row["metadata"] or "{}")
            ):
                continue
            hits.append((row["chunk_id"], -float(row["score"])))
            if limit is not None and len(hits) >= limit:
                break
        return hits

    def search(
        self, query: ParsedQuery, filters: ChunkFilters, limit: int, dataset_id: str
    ) -> list[Hit]:
        match = build_match_expression(query)
        if match is None:
            return []
        return self._rows(match, filters, dataset_id, limit)

    def count(self, query: ParsedQuery, filters: ChunkFilters, dataset_id: str) -> int:
        match = build_match_expression(query)
        if match is None:
            return 0

        if filters.metadata:
            return len(self._rows(match, filters, dataset_id, None))

        filter_sql, filter_params = _filter_sql(filters)
        row = self._db.fetchone(
            f"""
            SELECT COUNT(*) FROM chunks_fts
            JOIN chunks c ON c.id = chunks_fts.chunk_id
            WHERE chunks_fts MATCH ? AND chunks_fts.dataset_id = ?{filter_sql}
            """,
            (match, dataset_id, *filter_params),
        )
        return int(row[0]) if row else 0
