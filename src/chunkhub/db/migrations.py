"""Database migrations and schema management for chunkhub."""

import sqlite3

from chunkhub.db.connection import Database

# Schema version for tracking migrations
SCHEMA_VERSION = 1

SCHEMA_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Dataset partitions
-- configuration holds per-dataset overrides of the [dataset]/[search] settings
CREATE TABLE IF NOT EXISTS datasets (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    configuration TEXT NOT NULL DEFAULT '{}',  -- JSON object
    chunk_quota INTEGER,  -- NULL: use the configured default
    created_at TEXT NOT NULL
);

-- Chunk rows
-- vector_point_id is NULL for duplicates merged into another chunk's point
CREATE TABLE IF NOT EXISTS chunks (
    id TEXT PRIMARY KEY,
    dataset_id TEXT NOT NULL REFERENCES datasets(id) ON DELETE CASCADE,
    tracking_id TEXT,
    raw_markup TEXT NOT NULL DEFAULT '',
    plain_content TEXT NOT NULL DEFAULT '',
    link TEXT,
    metadata TEXT NOT NULL DEFAULT '{}',  -- JSON object, unindexed
    timestamp REAL,  -- Unix seconds, UTC
    weight REAL NOT NULL DEFAULT 1.0,
    vector_point_id TEXT,
    author_id TEXT,
    created_at TEXT NOT NULL,
    UNIQUE(dataset_id, tracking_id),
    UNIQUE(dataset_id, vector_point_id)
);

-- Tags, one row per (chunk, position) so tag filters are index backed
CREATE TABLE IF NOT EXISTS chunk_tags (
    chunk_id TEXT NOT NULL REFERENCES chunks(id) ON DELETE CASCADE,
    dataset_id TEXT NOT NULL,
    position INTEGER NOT NULL,
    tag TEXT NOT NULL,
    PRIMARY KEY (chunk_id, position)
);

-- Duplicate groups
-- One row per duplicate chunk, pointing at the chunk that owns the vector point
CREATE TABLE IF NOT EXISTS chunk_collisions (
    chunk_id TEXT PRIMARY KEY REFERENCES chunks(id) ON DELETE CASCADE,
    root_chunk_id TEXT NOT NULL,
    dataset_id TEXT NOT NULL,
    created_at TEXT NOT NULL
);

-- Full-text search index using FTS5
-- Holds every chunk, duplicates included, keyed by chunk id
CREATE VIRTUAL TABLE IF NOT EXISTS chunks_fts USING fts5(
    content,
    chunk_id UNINDEXED,
    dataset_id UNINDEXED,
    tokenize='porter unicode61'
);

-- Indexes for common queries
CREATE INDEX IF NOT EXISTS idx_chunks_dataset ON chunks(dataset_id);
CREATE INDEX IF NOT EXISTS idx_chunks_point ON chunks(vector_point_id);
CREATE INDEX IF NOT EXISTS idx_chunks_link ON chunks(dataset_id, link);
CREATE INDEX IF NOT EXISTS idx_chunks_timestamp ON chunks(dataset_id, timestamp);
CREATE INDEX IF NOT EXISTS idx_chunk_tags_tag ON chunk_tags(dataset_id, tag);
CREATE INDEX IF NOT EXISTS idx_collisions_root ON chunk_collisions(root_chunk_id);
"""


def run_migrations(db: Database) -> None:
    """Run database migrations to set up or upgrade schema.

    Args:
        db: Database connection to run migrations on.
    """
    try:
        result = db.fetchone("SELECT version FROM schema_version ORDER BY version DESC LIMIT 1")
        current_version = result[0] if result else 0
    except sqlite3.OperationalError:
        # Table doesn't exist yet
        current_version = 0

    if current_version < SCHEMA_VERSION:
        db.executescript(SCHEMA_SQL)
        db.execute(
            "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
            (SCHEMA_VERSION,),
        )
        db.commit()
