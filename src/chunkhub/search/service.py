"""Hybrid search: semantic, full-text and fused retrieval with pagination."""

import logging
import math
from datetime import datetime

from chunkhub.chunks.schemas import (
    Chunk,
    ChunkFilters,
    ScoredResult,
    SearchMode,
    SearchPage,
    utcnow,
)
from chunkhub.concurrency import WorkerPool
from chunkhub.config import DatasetConfig
from chunkhub.constants.search import PAGE_SIZE
from chunkhub.errors import ValidationFault
from chunkhub.interfaces import (
    EmbeddingClient,
    Hit,
    LexicalIndex,
    MetadataStore,
    Reranker,
    VectorIndex,
)
from chunkhub.search.highlight import highlight_markup, highlight_snippet, highlight_terms
from chunkhub.search.query import ParsedQuery, parse_query
from chunkhub.search.ranking import RRFRanker, recency_boost, sort_hits, weighted_fusion

logger = logging.getLogger(__name__)


def _page_slice(hits: list[Hit], page: int) -> list[Hit]:
    start = (page - 1) * PAGE_SIZE
    return hits[start : start + PAGE_SIZE]


def _total_pages(total_candidates: int) -> int:
    return math.ceil(total_candidates / PAGE_SIZE)


class HybridRanker:
    """Answers search requests against one dataset.

    Semantic hits come back as vector point ids and are translated to chunk
    ids on hydration, so duplicates surface through their root. Lexical hits
    are chunk ids and include duplicates.
    """

    def __init__(
        self,
        store: MetadataStore,
        vector_index: VectorIndex,
        lexical_index: LexicalIndex,
        embedder: EmbeddingClient,
        reranker: Reranker,
        pool: WorkerPool,
    ) -> None:
        self._store = store
        self._vector_index = vector_index
        self._lexical_index = lexical_index
        self._embedder = embedder
        self._reranker = reranker
        self._pool = pool

    async def search(
        self,
        query: str,
        mode: SearchMode,
        filters: ChunkFilters,
        page: int,
        config: DatasetConfig,
        *,
        weights: tuple[float, float] | None = None,
        cross_encoder: bool = True,
        recency_bias: bool = False,
        now: datetime | None = None,
    ) -> SearchPage:
        """Run one search and return the requested page.

        Args:
            query: Raw query string.
            mode: Semantic, fulltext or hybrid retrieval.
            filters: Link, tag, time range and metadata constraints.
            page: 1-based page number.
            config: Resolved configuration of the dataset.
            weights: (semantic, lexical) weights. Selects weighted fusion in
                hybrid mode and takes precedence over ``cross_encoder``.
            cross_encoder: Re-rank hybrid candidates with the cross-encoder.
                When False and no weights are given, RRF is used.
            recency_bias: Boost chunks with recent timestamps.
            now: Reference time for the recency boost (defaults to now).

        Returns:
            SearchPage with at most PAGE_SIZE results.

        Raises:
            ValidationFault: If the page is below 1 or weights are negative.
            UpstreamFault: If embedding or re-ranking fails.
        """
        if page < 1:
            raise ValidationFault(f"Page must be 1 or greater, got {page}")
        if weights is not None and min(weights) < 0:
            raise ValidationFault("Fusion weights must be non-negative")

        parsed = parse_query(query)

        if mode == SearchMode.SEMANTIC:
            hits, chunks, total = await self._semantic_hits(parsed, filters, page, config)
        elif mode == SearchMode.FULLTEXT:
            hits, chunks, total = await self._lexical_hits(parsed, filters, page, config)
        else:
            hits, chunks, total = await self._hybrid(
                parsed, filters, page, config, weights, cross_encoder
            )

        # Re-score every candidate up to this page before slicing.
        scores: dict[str, float] = {}
        for chunk_id, score in hits:
            chunk = chunks.get(chunk_id)
            if chunk is None:
                continue
            score *= chunk.weight
            if recency_bias:
                score += recency_boost(
                    chunk.timestamp,
                    now or utcnow(),
                    config.recency_weight,
                    config.recency_half_life_days,
                )
            scores[chunk_id] = score

        terms = highlight_terms(parsed)
        results = []
        for rank, (chunk_id, score) in enumerate(_page_slice(sort_hits(scores), page), start=1):
            chunk = chunks[chunk_id]
            results.append(
                ScoredResult(
                    chunk=chunk.model_copy(
                        update={"raw_markup": highlight_markup(chunk.raw_markup, terms)}
                    ),
                    score=score,
                    rank=rank,
                    highlight=highlight_snippet(
                        chunk.plain_content, terms, config.highlight_max_sentences
                    ),
                )
            )

        return SearchPage(results=results, page=page, total_pages=_total_pages(total))

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def _semantic_hits(
        self, parsed: ParsedQuery, filters: ChunkFilters, page: int, config: DatasetConfig
    ) -> tuple[list[Hit], dict[str, Chunk], int]:
        """Semantic hits up to the end of ``page`` keyed by chunk id, plus the match count."""
        vector = await self._embedder.embed(parsed.query, config)
        point_hits = await self._pool.run(
            self._vector_index.search, vector, filters, PAGE_SIZE * page, config.dataset_id
        )
        total = await self._pool.run(self._vector_index.count, filters, config.dataset_id)

        resolved = await self._pool.run(
            self._store.get_by_point_ids,
            [point_id for point_id, _ in point_hits],
            config.dataset_id,
        )
        by_point = {chunk.vector_point_id: chunk for chunk in resolved}

        hits: list[Hit] = []
        chunks: dict[str, Chunk] = {}
        for point_id, score in point_hits:
            chunk = by_point.get(point_id)
            if chunk is None:
                logger.warning(f"Search hit {point_id} has no chunk row; skipping")
                continue
            hits.append((chunk.id, score))
            chunks[chunk.id] = chunk
        return hits, chunks, total

    async def _lexical_hits(
        self, parsed: ParsedQuery, filters: ChunkFilters, page: int, config: DatasetConfig
    ) -> tuple[list[Hit], dict[str, Chunk], int]:
        hits = await self._pool.run(
            self._lexical_index.search, parsed, filters, PAGE_SIZE * page, config.dataset_id
        )
        total = await self._pool.run(
            self._lexical_index.count, parsed, filters, config.dataset_id
        )

        resolved = await self._pool.run(
            self._store.get_by_ids, [chunk_id for chunk_id, _ in hits], config.dataset_id
        )
        chunks = {chunk.id: chunk for chunk in resolved}
        return [hit for hit in hits if hit[0] in chunks], chunks, total

    async def _hybrid(
        self,
        parsed: ParsedQuery,
        filters: ChunkFilters,
        page: int,
        config: DatasetConfig,
        weights: tuple[float, float] | None,
        cross_encoder: bool,
    ) -> tuple[list[Hit], dict[str, Chunk], int]:
        semantic_hits, semantic_chunks, semantic_total = await self._semantic_hits(
            parsed, filters, page, config
        )
        lexical_hits, lexical_chunks, lexical_total = await self._lexical_hits(
            parsed, filters, page, config
        )
        chunks = {**lexical_chunks, **semantic_chunks}
        total = max(semantic_total, lexical_total)

        if weights is not None:
            fused = weighted_fusion(semantic_hits, lexical_hits, weights)
        elif cross_encoder:
            fused = await self._rerank(parsed, chunks, config)
        else:
            fused = RRFRanker(k=config.rrf_k).merge(semantic_hits, lexical_hits)

        return fused, chunks, total

    async def _rerank(
        self, parsed: ParsedQuery, chunks: dict[str, Chunk], config: DatasetConfig
    ) -> list[Hit]:
        if not chunks:
            return []
        chunk_ids = sorted(chunks)
        scores = await self._pool.run(
            self._reranker.rerank,
            parsed.query,
            [chunks[chunk_id].plain_content for chunk_id in chunk_ids],
            config.rerank_model,
        )
        return sort_hits(dict(zip(chunk_ids, scores)))
