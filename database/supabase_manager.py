"""
Supabase Database Manager for apiscout
v2.0 - Uploads captured API exchanges instead of report rows

Key Features:
- Uploads the same redacted records the SQLite log stores
- Error isolation: one failed record won't affect others
- Upsert on (session_name, seq, observed_at), so re-uploads are harmless
- Uses anon key by default - no service role key required

Usage:
    from database.supabase_manager import SupabaseManager

    manager = SupabaseManager()
    stats = manager.save_exchanges(session.exchanges, session.name)
    # stats = {"uploaded": N, "failed": N}
"""

import logging
from typing import Any, Dict, Iterable, Optional

from supabase import create_client, Client

from apiscout.config import SUPABASE_URL as DEFAULT_URL, SUPABASE_KEY as DEFAULT_KEY, SUPABASE_TABLE
from database.db_manager import exchange_to_record

logger = logging.getLogger(__name__)


class SupabaseManager:
    """
    Uploads captured exchanges to a Supabase table.
    Implements robust error handling to ensure one failed record doesn't block others.
    """

    def __init__(
        self,
        supabase_url: Optional[str] = None,
        supabase_key: Optional[str] = None,
        table: str = SUPABASE_TABLE,
        client: Optional[Client] = None
    ):
        """
        Initialize the Supabase manager.

        Args:
            supabase_url: Supabase project URL (defaults to config)
            supabase_key: Supabase API key (defaults to anon key from config)
            table: Target table name
            client: Pre-built client (skips create_client)
        """
        self.supabase_url = supabase_url or DEFAULT_URL
        self.supabase_key = supabase_key or DEFAULT_KEY
        self.table = table
        self._client: Client = client or create_client(self.supabase_url, self.supabase_key)
        logger.info(f"Supabase client initialized for: {self.supabase_url or 'injected client'}")

    def save_exchanges(self, exchanges: Iterable, session_name: str,
                       secret_headers: Iterable[str] = ()) -> Dict[str, Any]:
        """
        Upload exchanges one by one.

        Args:
            exchanges: CapturedExchange objects
            session_name: Target site name
            secret_headers: Extra header names to redact

        Returns:
            {"uploaded": int, "failed": int, "errors": [str, ...]}
        """
        stats: Dict[str, Any] = {"uploaded": 0, "failed": 0, "errors": []}
        secret_headers = list(secret_headers)

        for exchange in exchanges:
            record = exchange_to_record(exchange, session_name, secret_headers)
            try:
                self._client.table(self.table).upsert(
                    record, on_conflict="session_name,seq,observed_at"
                ).execute()
                stats["uploaded"] += 1
            except Exception as e:
                # Error isolation: log error, increment failed counter, continue
                logger.error(f"Upload failed for #{record['seq']} {record['method']} {record['url']}: {e}")
                stats["failed"] += 1
                stats["errors"].append(str(e))

        logger.info(
            f"Supabase upload for {session_name}: "
            f"{stats['uploaded']} uploaded, {stats['failed']} failed"
        )
        return stats
