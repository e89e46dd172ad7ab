# src/chunkhub/config.py
"""Configuration system for chunkhub.

This module handles loading settings from environment variables and INI files,
providing sensible defaults, and resolving the per-dataset configuration that
is threaded through ingest and search requests.
"""

from configparser import ConfigParser
from dataclasses import dataclass, replace
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping, Optional
import os

from chunkhub.constants.ingest import (
    DEFAULT_CHUNK_QUOTA,
    DEFAULT_DUPLICATE_THRESHOLD,
    DEFAULT_EMBEDDING_MODEL,
    DEFAULT_EMBEDDING_SIZE,
    DEFAULT_WORKER_THREADS,
)
from chunkhub.constants.search import (
    DEFAULT_RERANK_MODEL,
    HIGHLIGHT_MAX_SENTENCES,
    RECENCY_HALF_LIFE_DAYS,
    RECENCY_WEIGHT,
    RRF_K,
)


class ConfigError(Exception):
    """Raised when configuration validation fails."""

    pass


# Schema: section -> key -> (type, default, min, max, description)
CONFIG_SCHEMA: dict[str, dict[str, tuple[type, Any, Any, Any, str]]] = {
    "dataset": {
        "duplicate_threshold": (
            float,
            DEFAULT_DUPLICATE_THRESHOLD,
            -1.0,
            1.0,
            "Similarity at or above which a new chunk is a duplicate",
        ),
        "embedding_size": (int, DEFAULT_EMBEDDING_SIZE, 1, 65536, "Embedding vector length"),
        "embedding_model": (str, DEFAULT_EMBEDDING_MODEL, None, None, "LiteLLM embedding model"),
    },
    "search": {
        "rrf_k": (int, RRF_K, 1, 1000, "Reciprocal Rank Fusion constant"),
        "recency_weight": (float, RECENCY_WEIGHT, 0.0, 10.0, "Max score boost for new chunks"),
        "recency_half_life_days": (
            float,
            RECENCY_HALF_LIFE_DAYS,
            0.01,
            36500.0,
            "Age at which the recency boost halves",
        ),
        "rerank_model": (str, DEFAULT_RERANK_MODEL, None, None, "Cross-encoder model name"),
        "highlight_max_sentences": (
            int,
            HIGHLIGHT_MAX_SENTENCES,
            1,
            50,
            "Sentences highlighted per result",
        ),
    },
    "store": {
        "worker_threads": (
            int,
            DEFAULT_WORKER_THREADS,
            1,
            128,
            "Threads for blocking store and index calls",
        ),
    },
    "ingest": {
        "default_chunk_quota": (
            int,
            DEFAULT_CHUNK_QUOTA,
            0,
            None,
            "Chunks allowed per dataset (0 = unlimited)",
        ),
    },
}

# Keys a dataset row may override, all taken from the sections above.
DATASET_OVERRIDABLE: dict[str, str] = {
    "duplicate_threshold": "dataset",
    "embedding_size": "dataset",
    "embedding_model": "dataset",
    "rrf_k": "search",
    "recency_weight": "search",
    "recency_half_life_days": "search",
    "rerank_model": "search",
}


@dataclass(frozen=True)
class DatasetSection:
    """Dataset-level defaults."""

    duplicate_threshold: float
    embedding_size: int
    embedding_model: str


@dataclass(frozen=True)
class SearchSection:
    """Search and ranking configuration."""

    rrf_k: int
    recency_weight: float
    recency_half_life_days: float
    rerank_model: str
    highlight_max_sentences: int


@dataclass(frozen=True)
class StoreSection:
    """Store access configuration."""

    worker_threads: int


@dataclass(frozen=True)
class IngestSection:
    """Ingest configuration."""

    default_chunk_quota: int


def _coerce(section: str, key: str, typ: type, raw_value: Any) -> Any:
    """Convert a raw INI or JSON value to the schema type."""
    try:
        if typ is bool:
            if isinstance(raw_value, bool):
                return raw_value
            return str(raw_value).lower() in ("true", "1", "yes", "on")
        if typ is int:
            if isinstance(raw_value, bool):
                raise ValueError("boolean is not an integer")
            return int(raw_value)
        if typ is float:
            return float(raw_value)
        return str(raw_value)
    except (TypeError, ValueError) as e:
        raise ConfigError(
            f"Invalid value for [{section}].{key}: {raw_value!r} (expected {typ.__name__})"
        ) from e


def _check_range(section: str, key: str, value: Any, min_val: Any, max_val: Any) -> None:
    """Validate a numeric value against its schema bounds."""
    if min_val is not None and value < min_val:
        raise ConfigError(f"Value for [{section}].{key} is {value}, but minimum is {min_val}")
    if max_val is not None and value > max_val:
        raise ConfigError(f"Value for [{section}].{key} is {value}, but maximum is {max_val}")


def _load_section(
    parser: ConfigParser, section: str, schema: dict[str, tuple[type, Any, Any, Any, str]]
) -> dict[str, Any]:
    """Load and validate a configuration section.

    Args:
        parser: ConfigParser instance with loaded config
        section: Section name to load
        schema: Schema definition for the section

    Returns:
        Dictionary of validated configuration values

    Raises:
        ConfigError: If validation fails
    """
    result = {}

    for key, (typ, default, min_val, max_val, _) in schema.items():
        if parser.has_option(section, key):
            value = _coerce(section, key, typ, parser.get(section, key))
        else:
            value = default

        if typ in (int, float) and value is not None:
            _check_range(section, key, value, min_val, max_val)

        result[key] = value

    return result


def _defaults(section: str) -> dict[str, Any]:
    return {key: default for key, (_, default, _, _, _) in CONFIG_SCHEMA[section].items()}


@dataclass(frozen=True)
class Config:
    """Complete application configuration."""

    data_dir: Path
    embedding_api_key: Optional[str] = None
    embedding_api_base: Optional[str] = None

    dataset: DatasetSection = None  # type: ignore[assignment]
    search: SearchSection = None  # type: ignore[assignment]
    store: StoreSection = None  # type: ignore[assignment]
    ingest: IngestSection = None  # type: ignore[assignment]

    def __post_init__(self):
        """Initialize section configs with defaults if not provided."""
        if self.dataset is None:
            object.__setattr__(self, "dataset", DatasetSection(**_defaults("dataset")))
        if self.search is None:
            object.__setattr__(self, "search", SearchSection(**_defaults("search")))
        if self.store is None:
            object.__setattr__(self, "store", StoreSection(**_defaults("store")))
        if self.ingest is None:
            object.__setattr__(self, "ingest", IngestSection(**_defaults("ingest")))

    @property
    def db_path(self) -> Path:
        """Path to the SQLite database holding chunk rows and the FTS index."""
        return self.data_dir / "chunkhub.db"

    @property
    def index_path(self) -> Path:
        """Path to the ChromaDB persistence directory."""
        return self.data_dir / "index"


def _load_config(config_path: Optional[Path] = None, data_dir: Path = Path(".")) -> Config:
    """Load configuration from an INI file.

    Args:
        config_path: Path to config file. If None, uses defaults from schema.
        data_dir: Data directory to place in the resulting Config.

    Returns:
        Config object with all sections populated.

    Raises:
        ConfigError: If validation fails
    """
    parser = ConfigParser()

    if config_path and config_path.exists():
        parser.read(config_path)

    return Config(
        data_dir=data_dir,
        dataset=DatasetSection(**_load_section(parser, "dataset", CONFIG_SCHEMA["dataset"])),
        search=SearchSection(**_load_section(parser, "search", CONFIG_SCHEMA["search"])),
        store=StoreSection(**_load_section(parser, "store", CONFIG_SCHEMA["store"])),
        ingest=IngestSection(**_load_section(parser, "ingest", CONFIG_SCHEMA["ingest"])),
    )


@lru_cache
def load_settings() -> Config:
    """Load application settings from environment and config file.

    Environment:
        CHUNKHUB_DATA_DIR: Data directory (defaults to ~/.chunkhub).
        CHUNKHUB_CONFIG: INI file (defaults to <data dir>/config.ini).
        EMBEDDING_API_KEY / EMBEDDING_API_BASE: Embedding provider access.

    Returns:
        Cached Config instance.

    Raises:
        ConfigError: If the config file holds invalid values.
    """
    data_dir_str = os.getenv("CHUNKHUB_DATA_DIR")
    data_dir = Path(data_dir_str) if data_dir_str else Path.home() / ".chunkhub"

    config_str = os.getenv("CHUNKHUB_CONFIG")
    config_file = Path(config_str) if config_str else data_dir / "config.ini"
    try:
        config_exists = config_file.exists()
    except PermissionError:
        config_exists = False

    base_config = _load_config(config_file if config_exists else None, data_dir=data_dir)

    return replace(
        base_config,
        embedding_api_key=os.getenv("EMBEDDING_API_KEY"),
        embedding_api_base=os.getenv("EMBEDDING_API_BASE"),
    )


# =============================================================================
# Per-dataset configuration
# =============================================================================


@dataclass(frozen=True)
class DatasetConfig:
    """Configuration for one dataset, resolved once per request.

    Passed explicitly into the dedup engine, the ranker and the recommender;
    nothing below the service layer reads global settings.
    """

    dataset_id: str
    duplicate_threshold: float
    embedding_size: int
    embedding_model: str
    rrf_k: int
    recency_weight: float
    recency_half_life_days: float
    rerank_model: str
    highlight_max_sentences: int
    chunk_quota: int


def validate_overrides(overrides: Mapping[str, Any]) -> dict[str, Any]:
    """Validate a dataset's configuration overrides.

    Args:
        overrides: Raw mapping supplied with the dataset.

    Returns:
        Overrides coerced to their schema types.

    Raises:
        ConfigError: On unknown keys or out-of-range values.
    """
    result: dict[str, Any] = {}
    for key, raw_value in overrides.items():
        section = DATASET_OVERRIDABLE.get(key)
        if section is None:
            raise ConfigError(f"Unknown dataset configuration key: {key!r}")
        typ, _, min_val, max_val, _ = CONFIG_SCHEMA[section][key]
        value = _coerce(section, key, typ, raw_value)
        if typ in (int, float):
            _check_range(section, key, value, min_val, max_val)
        result[key] = value
    return result


def resolve_dataset_config(
    settings: Config,
    dataset_id: str,
    overrides: Mapping[str, Any] | None = None,
    chunk_quota: int | None = None,
) -> DatasetConfig:
    """Overlay a dataset's overrides on the application defaults.

    Args:
        settings: Application settings.
        dataset_id: Dataset the configuration is for.
        overrides: The dataset's stored configuration mapping.
        chunk_quota: The dataset's own quota, or None for the default.

    Returns:
        Frozen DatasetConfig for this request.
    """
    values: dict[str, Any] = {
        "duplicate_threshold": settings.dataset.duplicate_threshold,
        "embedding_size": settings.dataset.embedding_size,
        "embedding_model": settings.dataset.embedding_model,
        "rrf_k": settings.search.rrf_k,
        "recency_weight": settings.search.recency_weight,
        "recency_half_life_days": settings.search.recency_half_life_days,
        "rerank_model": settings.search.rerank_model,
    }
    values.update(validate_overrides(overrides or {}))

    return DatasetConfig(
        dataset_id=dataset_id,
        highlight_max_sentences=settings.search.highlight_max_sentences,
        chunk_quota=chunk_quota if chunk_quota is not None else settings.ingest.default_chunk_quota,
        **values,
    )
