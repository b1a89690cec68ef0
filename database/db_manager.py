"""
Database Manager for apiscout - local log of captured API exchanges
v3.0 - Rewritten for API discovery sessions
       Sensitive headers are redacted before anything reaches disk

Tables:
- api_exchanges: one row per captured or replayed exchange

Duplicate Handling Logic:
- (session_name, seq, observed_at) identifies an exchange
- Re-saving the same exchange is skipped, never overwritten
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterable, List, Mapping, Optional
from urllib.parse import urlparse

from apiscout.config import DB_PATH, SENSITIVE_HEADERS

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"


def redact_headers(headers: Mapping[str, str], extra: Iterable[str] = ()) -> Dict[str, str]:
    """
    Replace cookie/authorization/CSRF header values with a placeholder.

    Args:
        headers: Header mapping to clean
        extra: Site-specific secret header names (e.g. a custom CSRF header)
    """
    sensitive = SENSITIVE_HEADERS | {name.lower() for name in extra}
    return {
        name: (REDACTED if name.lower() in sensitive else value)
        for name, value in headers.items()
    }


def exchange_to_record(exchange, session_name: str, secret_headers: Iterable[str] = ()) -> Dict[str, Any]:
    """
    Flatten a CapturedExchange into a storable row with secrets removed.

    Args:
        exchange: CapturedExchange
        session_name: Target site name the exchange belongs to
        secret_headers: Extra header names to redact, usually site.sensitive_headers()
    """
    parsed = urlparse(exchange.url)
    return {
        "session_name": session_name,
        "seq": exchange.seq,
        "method": exchange.method,
        "url": exchange.url,
        "host": parsed.netloc,
        "path": parsed.path or "/",
        "status": exchange.status,
        "resource_type": exchange.resource_type,
        "content_type": exchange.content_type,
        "request_headers": json.dumps(redact_headers(exchange.request_headers, secret_headers), ensure_ascii=False),
        "request_body": exchange.request_body,
        "response_headers": json.dumps(redact_headers(exchange.response_headers, secret_headers), ensure_ascii=False),
        "response_body": exchange.response_body,
        "body_truncated": exchange.body_truncated,
        "observed_at": datetime.fromtimestamp(exchange.timestamp).isoformat(),
    }


class DatabaseManager:
    """
    Manages SQLite storage of captured exchanges.
    Provides thread-safe operations for storing and querying data.
    """

    def __init__(self, db_path: str = DB_PATH):
        """
        Initialize the database manager.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = Path(db_path)
        self._lock = Lock()

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        logger.info(f"Database initialized at: {self.db_path}")

    def _init_db(self):
        """Create tables if they don't exist."""
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS api_exchanges (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        session_name TEXT NOT NULL,
                        seq INTEGER NOT NULL,
                        method TEXT NOT NULL,
                        url TEXT NOT NULL,
                        host TEXT NOT NULL,
                        path TEXT NOT NULL,
                        status INTEGER NOT NULL,
                        resource_type TEXT,
                        content_type TEXT,
                        request_headers TEXT,
                        request_body TEXT,
                        response_headers TEXT,
                        response_body TEXT,
                        body_truncated INTEGER DEFAULT 0,
                        observed_at TEXT NOT NULL,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        UNIQUE(session_name, seq, observed_at)
                    )
                """)

                # Add body_truncated column to logs created before it existed (migration)
                try:
                    cursor.execute("""
                        ALTER TABLE api_exchanges
                        ADD COLUMN body_truncated INTEGER DEFAULT 0
                    """)
                    logger.info("Added body_truncated column to api_exchanges")
                except sqlite3.OperationalError:
                    pass  # Column already exists

                cursor.execute("""
                    CREATE INDEX IF NOT EXISTS idx_exchanges_session_path
                    ON api_exchanges(session_name, host, path)
                """)
                conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Database initialization error: {e}")
            raise

    @contextmanager
    def get_connection(self):
        """
        Context manager for database connections.

        Yields:
            sqlite3.Connection: Database connection
        """
        conn = None
        try:
            with self._lock:
                conn = sqlite3.connect(
                    str(self.db_path),
                    timeout=30.0,
                    check_same_thread=False
                )
                conn.row_factory = sqlite3.Row
                yield conn
        except sqlite3.Error as e:
            logger.error(f"Database connection error: {e}")
            if conn:
                conn.rollback()
            raise
        finally:
            if conn:
                conn.close()

    # ==================== Exchange Operations ====================

    def save_exchanges(self, exchanges: Iterable, session_name: str,
                       secret_headers: Iterable[str] = ()) -> Dict[str, int]:
        """
        Save exchanges for one session. Already-stored exchanges are skipped.

        Args:
            exchanges: CapturedExchange objects
            session_name: Target site name
            secret_headers: Extra header names to redact

        Returns:
            Dictionary with counts: {"inserted": N, "skipped": N}
        """
        stats = {"inserted": 0, "skipped": 0}
        secret_headers = list(secret_headers)
        records = [exchange_to_record(e, session_name, secret_headers) for e in exchanges]
        if not records:
            logger.warning("No exchanges to save")
            return stats

        columns = list(records[0].keys())
        sql = (
            f"INSERT OR IGNORE INTO api_exchanges ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)})"
        )
        with self.get_connection() as conn:
            cursor = conn.cursor()
            for record in records:
                cursor.execute(sql, [record[c] for c in columns])
                if cursor.rowcount:
                    stats["inserted"] += 1
                else:
                    stats["skipped"] += 1
            conn.commit()

        logger.info(
            f"Saved exchanges for {session_name}: "
            f"{stats['inserted']} inserted, {stats['skipped']} skipped"
        )
        return stats

    def get_exchanges(
        self,
        session_name: Optional[str] = None,
        path_contains: Optional[str] = None,
        limit: int = 1000
    ) -> List[Dict[str, Any]]:
        """
        Query stored exchanges, oldest first.

        Args:
            session_name: Only this target
            path_contains: Substring filter on the URL path
            limit: Maximum rows

        Returns:
            List of row dicts with headers decoded from JSON
        """
        sql = "SELECT * FROM api_exchanges WHERE 1=1"
        params: List[Any] = []
        if session_name:
            sql += " AND session_name = ?"
            params.append(session_name)
        if path_contains:
            sql += " AND path LIKE ?"
            params.append(f"%{path_contains}%")
        sql += " ORDER BY observed_at, seq LIMIT ?"
        params.append(limit)

        try:
            with self.get_connection() as conn:
                rows = [dict(row) for row in conn.execute(sql, params).fetchall()]
        except sqlite3.Error as e:
            logger.error(f"Error retrieving exchanges: {e}")
            return []

        for row in rows:
            row["request_headers"] = json.loads(row["request_headers"] or "{}")
            row["response_headers"] = json.loads(row["response_headers"] or "{}")
            row["body_truncated"] = bool(row["body_truncated"])
        return rows

    def count_exchanges(self, session_name: Optional[str] = None) -> int:
        with self.get_connection() as conn:
            if session_name:
                row = conn.execute(
                    "SELECT COUNT(*) FROM api_exchanges WHERE session_name = ?", (session_name,)
                ).fetchone()
            else:
                row = conn.execute("SELECT COUNT(*) FROM api_exchanges").fetchone()
        return row[0]
