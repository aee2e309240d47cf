import sqlite3
from pathlib import Path
from typing import Optional
from pipemap.core.config import default_db_path
from pipemap.core.logger import get_logger

logger = get_logger(__name__)

def init_schema(conn: sqlite3.Connection):
    """
    One document table for every feature kind. Geometry is kept as JSON text.
    """
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS features (
                kind TEXT NOT NULL CHECK (kind IN ('pipeline', 'zone', 'marker')),
                feature_id TEXT NOT NULL,
                name TEXT,
                geometry TEXT NOT NULL,
                properties TEXT NOT NULL DEFAULT '{}',
                version INTEGER NOT NULL DEFAULT 1,
                updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (kind, feature_id)
            )
        """)
        conn.commit()
    except sqlite3.Error as e:
        logger.error("schema_init_failed", error=str(e))
        raise

def get_db_connection(db_path: Optional[Path] = None) -> sqlite3.Connection:
    """
    Returns a configured SQLite connection with WAL mode and the feature schema.
    """
    path = Path(db_path or default_db_path())
    path.parent.mkdir(parents=True, exist_ok=True)

    # Store calls arrive on the save worker threads
    conn = sqlite3.connect(str(path), check_same_thread=False)

    try:
        # Enable Write-Ahead Logging
        conn.execute("PRAGMA journal_mode=WAL;")

        # fsync at checkpoints only
        conn.execute("PRAGMA synchronous=NORMAL;")
    except sqlite3.Error as e:
        logger.error("db_config_failed", error=str(e))

    init_schema(conn)
    return conn
