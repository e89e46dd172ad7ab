"""Score fusion strategies and score adjustments for hybrid search."""

from datetime import datetime

from chunkhub.constants.search import RRF_K, RRF_MISSING_RANK
from chunkhub.interfaces import Hit


def sort_hits(scores: dict[str, float]) -> list[Hit]:
    """Order by descending score, ties broken by id so output is stable."""
    return sorted(scores.items(), key=lambda item: (-item[1], item[0]))


class RRFRanker:
    """Combines semantic and full-text search results using RRF.

    Reciprocal Rank Fusion scores documents based on their ranks in
    multiple result lists. Documents appearing in both lists get
    boosted scores.

    RRF_score(doc) = sum(1 / (k + rank_i)) for each list i
    """

    def __init__(self, k: int = RRF_K, missing_rank: int = RRF_MISSING_RANK) -> None:
        """Initialize RRF ranker.

        Args:
            k: Ranking constant (default 60, standard for RRF).
            missing_rank: Rank assigned to documents not in a list.
        """
        self._k = k
        self._missing_rank = missing_rank

    def merge(self, semantic_hits: list[Hit], lexical_hits: list[Hit]) -> list[Hit]:
        """Merge two best-first hit lists using RRF scoring.

        Args:
            semantic_hits: (chunk id, score) from vector search.
            lexical_hits: (chunk id, score) from full-text search.

        Returns:
            (chunk id, RRF score) sorted by score, highest first.
        """
        semantic_ranks = {chunk_id: rank for rank, (chunk_id, _) in enumerate(semantic_hits)}
        lexical_ranks = {chunk_id: rank for rank, (chunk_id, _) in enumerate(lexical_hits)}

        scores: dict[str, float] = {}
        for chunk_id in set(semantic_ranks) | set(lexical_ranks):
            sem_rank = semantic_ranks.get(chunk_id, self._missing_rank)
            lex_rank = lexical_ranks.get(chunk_id, self._missing_rank)
            scores[chunk_id] = 1 / (self._k + sem_rank + 1) + 1 / (self._k + lex_rank + 1)

        return sort_hits(scores)


def min_max_normalize(hits: list[Hit]) -> dict[str, float]:
    """Scale scores into [0, 1]. A single score, or all-equal scores, map to 1.0."""
    if not hits:
        return {}
    values = [score for _, score in hits]
    low, high = min(values), max(values)
    if high == low:
        return {chunk_id: 1.0 for chunk_id, _ in hits}
    return {chunk_id: (score - low) / (high - low) for chunk_id, score in hits}


def weighted_fusion(
    semantic_hits: list[Hit], lexical_hits: list[Hit], weights: tuple[float, float]
) -> list[Hit]:
    """Weighted sum of min-max normalized scores.

    A chunk missing from one list contributes 0 from that side.
    """
    semantic_weight, lexical_weight = weights
    semantic = min_max_normalize(semantic_hits)
    lexical = min_max_normalize(lexical_hits)

    scores = {
        chunk_id: semantic_weight * semantic.get(chunk_id, 0.0)
        + lexical_weight * lexical.get(chunk_id, 0.0)
        for chunk_id in set(semantic) | set(lexical)
    }
    return sort_hits(scores)


def recency_boost(
    timestamp: datetime | None, now: datetime, weight: float, half_life_days: float
) -> float:
    """Additive boost that halves every ``half_life_days`` of age.

    Chunks without a timestamp get no boost; future timestamps count as new.
    """
    if timestamp is None:
        return 0.0
    age_days = max(0.0, (now - timestamp).total_seconds() / 86400.0)
    return weight * 0.5 ** (age_days / half_life_days)
