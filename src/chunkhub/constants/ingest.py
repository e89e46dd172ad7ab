"""Ingest and deduplication configuration.

These settings control collision detection on write and the embedding model
used for chunks. Every value here can be overridden per dataset through the
dataset's configuration mapping.
"""

# =============================================================================
# Collision Detection
# =============================================================================
# A new chunk whose nearest neighbour scores at or above this threshold is
# merged into that neighbour's duplicate group instead of getting its own
# vector point. Scores are cosine similarity (1 - cosine distance), so higher
# means more similar. Lower the threshold to merge more aggressively.

DEFAULT_DUPLICATE_THRESHOLD = 0.95

# =============================================================================
# Embeddings
# =============================================================================

DEFAULT_EMBEDDING_SIZE = 1536
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"

# =============================================================================
# Chunk Defaults
# =============================================================================

DEFAULT_CHUNK_WEIGHT = 1.0

# 0 disables the quota check.
DEFAULT_CHUNK_QUOTA = 0

# Worker threads used for blocking store and index calls.
DEFAULT_WORKER_THREADS = 8
