"""Search and ranking configuration.

These settings control hybrid search (semantic + full-text). Hybrid search
combines ChromaDB vector similarity with SQLite FTS5 full-text search, then
fuses and optionally re-ranks the union.
"""

# =============================================================================
# Pagination
# =============================================================================
# Every search mode returns fixed-size pages. Total pages are derived from the
# index-layer match count, not from the fused result list.

PAGE_SIZE = 10

# =============================================================================
# Fusion
# =============================================================================
# Reciprocal Rank Fusion is used in hybrid mode when neither explicit weights
# nor the cross-encoder are requested. Documents missing from one list are
# treated as sitting at MISSING_RANK in it.

RRF_K = 60
RRF_MISSING_RANK = 1000

# Default cross-encoder model for hybrid re-ranking.
DEFAULT_RERANK_MODEL = "BAAI/bge-reranker-large"

# =============================================================================
# Recency Bias
# =============================================================================
# When enabled, score += RECENCY_WEIGHT * 0.5 ** (age / half life). A chunk
# exactly one half life old gets half the boost of a brand-new chunk.

RECENCY_WEIGHT = 0.1
RECENCY_HALF_LIFE_DAYS = 30.0

# =============================================================================
# Highlighting
# =============================================================================
# Highlight tags wrap matching terms inside the best matching sentences.
# Terms shorter than HIGHLIGHT_MIN_TERM_LENGTH are ignored (articles etc.).

HIGHLIGHT_OPEN_TAG = "<b>"
HIGHLIGHT_CLOSE_TAG = "</b>"
HIGHLIGHT_MAX_SENTENCES = 3
HIGHLIGHT_MIN_TERM_LENGTH = 3

# Marker that negates a query term, e.g. "-spam".
NEGATION_MARKER = "-"
