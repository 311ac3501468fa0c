import os
import sqlite3
from .config import DEFAULT_CONFIG

DB_FILE = os.environ.get("SCRAPECTL_DB", "scrape.db")

SCHEMA = """
CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    status TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    started_at TEXT,
    completed_at TEXT,
    total_targets INTEGER NOT NULL,
    current_index INTEGER NOT NULL DEFAULT 0,
    target_results TEXT NOT NULL,
    success_count INTEGER NOT NULL DEFAULT 0,
    failed_count INTEGER NOT NULL DEFAULT 0,
    error TEXT,
    run_id TEXT
);

CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status, completed_at);

CREATE TABLE IF NOT EXISTS targets (
    id TEXT PRIMARY KEY,
    url TEXT NOT NULL,
    name TEXT NOT NULL,
    enabled INTEGER NOT NULL DEFAULT 1,
    added_at TEXT NOT NULL,
    last_scraped_at TEXT
);

CREATE TABLE IF NOT EXISTS config (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


def connect_db(path=None):
    path = path or DB_FILE
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    if path != ":memory:":
        conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA busy_timeout=5000;")
    return conn


def init_db(conn):
    """Create the schema and seed config defaults on an open connection."""
    with conn:
        for stmt in SCHEMA.strip().split(";"):
            s = stmt.strip()
            if s:
                conn.execute(s + ";")
        for k, v in DEFAULT_CONFIG.items():
            conn.execute(
                "INSERT OR IGNORE INTO config(key, value) VALUES(?,?)", (k, v)
            )
        # Databases created before jobs carried a run id
        cols = {r["name"] for r in conn.execute("PRAGMA table_info(jobs)")}
        if "run_id" not in cols:
            conn.execute("ALTER TABLE jobs ADD COLUMN run_id TEXT;")
    return conn
