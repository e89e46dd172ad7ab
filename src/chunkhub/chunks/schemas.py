"""Chunk, dataset and search schemas."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, Field, field_validator

# Metadata values are scalars only; filtering on them is a substring match.
MetadataValue = Union[str, int, float, bool]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Read a naive datetime as UTC and convert an aware one to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Chunk(BaseModel):
    """A stored chunk.

    ``vector_point_id`` is None for duplicates: they share their root's point
    and are only reachable through lexical search and id lookups.
    """

    id: str = Field(..., description="Generated chunk id")
    dataset_id: str = Field(..., description="Owning dataset")
    tracking_id: Optional[str] = Field(None, description="Caller-supplied alternate key")
    raw_markup: str = Field("", description="Markup as submitted")
    plain_content: str = Field("", description="Text derived from the markup")
    link: Optional[str] = Field(None, description="Opaque link, filterable")
    tag_set: list[str] = Field(default_factory=list, description="Ordered tags")
    metadata: dict[str, MetadataValue] = Field(default_factory=dict)
    timestamp: Optional[datetime] = Field(None, description="UTC time for recency and ranges")
    weight: float = Field(1.0, description="Relative ranking weight")
    vector_point_id: Optional[str] = Field(None, description="Owned vector point, if root")
    author_id: Optional[str] = Field(None, description="Who submitted the chunk")
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_duplicate(self) -> bool:
        return self.vector_point_id is None


class Dataset(BaseModel):
    """A dataset partition with its configuration overrides."""

    id: str
    name: str
    configuration: dict[str, MetadataValue] = Field(default_factory=dict)
    chunk_quota: Optional[int] = Field(None, description="Max chunks, None for the default")
    created_at: datetime = Field(default_factory=utcnow)


class DatasetCreate(BaseModel):
    """Request to create a dataset."""

    name: str = Field(..., min_length=1)
    configuration: dict[str, MetadataValue] = Field(default_factory=dict)
    chunk_quota: Optional[int] = Field(None, ge=0)


class TimeRange(BaseModel):
    """Inclusive bounds on chunk timestamps. Either side may be open."""

    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @field_validator("start", "end")
    @classmethod
    def normalize_bound(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value) if value is not None else None


class ChunkFilters(BaseModel):
    """Filters accepted by both the vector and the lexical index.

    ``links`` and ``tags`` are any-of exact matches (tags are index backed).
    ``metadata`` values are substring matches on the chunk's metadata, which
    has no index support and is evaluated by a linear scan.
    """

    links: Optional[list[str]] = None
    tags: Optional[list[str]] = None
    time_range: Optional[TimeRange] = None
    metadata: Optional[dict[str, MetadataValue]] = None

    @property
    def is_empty(self) -> bool:
        return not (self.links or self.tags or self.time_range or self.metadata)

    def matches_metadata(self, metadata: dict[str, MetadataValue]) -> bool:
        """Substring-match every metadata filter against a chunk's metadata."""
        for key, wanted in (self.metadata or {}).items():
            if key not in metadata:
                return False
            if str(wanted) not in str(metadata[key]):
                return False
        return True


class ChunkCreate(BaseModel):
    """Request to ingest a chunk."""

    chunk_html: str = Field("", description="HTML or plain text content")
    link: Optional[str] = None
    tag_set: list[str] = Field(default_factory=list)
    metadata: dict[str, MetadataValue] = Field(default_factory=dict)
    chunk_vector: Optional[list[float]] = Field(
        None, description="Pre-computed embedding; skips the embedding call"
    )
    tracking_id: Optional[str] = None
    time_stamp: Optional[str] = Field(None, description="ISO 8601 timestamp")
    weight: Optional[float] = None
    author_id: Optional[str] = None


class ChunkUpdate(BaseModel):
    """Request to update a chunk. Absent fields keep their stored value."""

    chunk_html: Optional[str] = None
    link: Optional[str] = None
    tag_set: Optional[list[str]] = None
    metadata: Optional[dict[str, MetadataValue]] = None
    tracking_id: Optional[str] = None
    time_stamp: Optional[str] = None
    weight: Optional[float] = None


class CreatedChunk(BaseModel):
    """Result of an ingest."""

    chunk: Chunk
    duplicate: bool


class SearchMode(str, Enum):
    """Retrieval mode for a search request."""

    SEMANTIC = "semantic"
    FULLTEXT = "fulltext"
    HYBRID = "hybrid"


class ScoredResult(BaseModel):
    """A hydrated chunk with its relevance score and page-relative rank."""

    chunk: Chunk
    score: float
    rank: int = 0
    highlight: Optional[str] = None


class SearchPage(BaseModel):
    """One page of search results."""

    results: list[ScoredResult]
    page: int
    total_pages: int


class SearchRequest(BaseModel):
    """Search request body."""

    query: str
    search_type: SearchMode = SearchMode.HYBRID
    page: int = Field(1, ge=1)
    filters: ChunkFilters = Field(default_factory=ChunkFilters)
    weights: Optional[tuple[float, float]] = Field(
        None, description="(semantic, lexical) weights for hybrid fusion"
    )
    cross_encoder: bool = True
    date_bias: bool = False


class ChunkIdsRequest(BaseModel):
    """Request for several chunks by id."""

    ids: list[str] = Field(..., description="Chunk ids, returned in this order")


class RecommendRequest(BaseModel):
    """Recommendation request body."""

    positive_chunk_ids: list[str]
    limit: int = Field(10, ge=1, le=100)
