"""Configuration constants.

Re-exports all config for convenient importing:
    from chunkhub.constants import PAGE_SIZE, DEFAULT_DUPLICATE_THRESHOLD
"""

from chunkhub.constants.ingest import *  # noqa: F403
from chunkhub.constants.search import *  # noqa: F403
