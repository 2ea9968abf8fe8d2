"""
Database connection management.

Provides SQLite connections and write transactions for the relay store.
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

# Seconds a writer waits on a locked database before giving up
BUSY_TIMEOUT = 30.0


def get_connection(db_path: str = "chat_relay.db") -> sqlite3.Connection:
    """Create and return a SQLite connection in autocommit mode.
    
    Transactions are opened explicitly by :func:`transaction`.
    
    Args:
        db_path: Path to SQLite database file
        
    Returns:
        SQLite connection with row access by column name
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=BUSY_TIMEOUT, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def transaction(db_path: str = "chat_relay.db") -> Iterator[sqlite3.Connection]:
    """Run a read-modify-write cycle as one atomic unit.
    
    Uses ``BEGIN IMMEDIATE`` so the write lock is taken before the read,
    which serializes concurrent read-modify-write cycles across threads
    and processes sharing the same file.
    
    Args:
        db_path: Path to SQLite database file
        
    Yields:
        Connection with an open transaction, committed on normal exit
    """
    conn = get_connection(db_path)
    try:
        conn.execute("BEGIN IMMEDIATE")
        yield conn
        conn.commit()
    except Exception:
        if conn.in_transaction:
            conn.rollback()
        raise
    finally:
        conn.close()
