"""
SQLite foundation - connection handling and the memories table.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator, Optional

from .config import DB_PATH, ensure_db_directory


def connect(db_path: Optional[str] = None) -> sqlite3.Connection:
    """Open a connection in autocommit mode; transactions are begun explicitly."""
    conn = sqlite3.connect(db_path or DB_PATH, timeout=30.0, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def get_db(db_path: Optional[str] = None) -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection."""
    conn = connect(db_path)
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: Optional[str] = None):
    """Initialize the database with required tables."""
    ensure_db_directory(db_path)
    with get_db(db_path) as conn:
        cursor = conn.cursor()

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS memories (
                id TEXT PRIMARY KEY,
                project_id TEXT NOT NULL,
                content TEXT NOT NULL,
                embedding BLOB,           -- float32 vector bytes
                embedding_dim INTEGER,
                type TEXT NOT NULL,
                metadata TEXT NOT NULL DEFAULT '{}',
                created TEXT NOT NULL,
                last_accessed TEXT NOT NULL,
                is_deprecated BOOLEAN DEFAULT FALSE,
                is_deleted BOOLEAN DEFAULT FALSE,
                deleted_at TEXT
            )
        ''')

        # Create indexes for the deprecation filters
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_memories_project_id ON memories(project_id)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_memories_type ON memories(type)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_memories_created ON memories(created)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_memories_last_accessed ON memories(last_accessed)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_memories_is_deprecated ON memories(is_deprecated)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_memories_is_deleted ON memories(is_deleted)')


def health_check(db_path: Optional[str] = None):
    """Check database health."""
    try:
        with get_db(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
            table_names = [row[0] for row in cursor.fetchall()]
            return 'memories' in table_names
    except sqlite3.Error:
        return False
