"""
Cache backends for geocoding results.

Implements an in-memory cache and a DuckDB-backed persistent cache.
Resolved, NeedsDisambiguation and NotFound results are stored; Failed
results are transient and always rejected.
"""

import json
import logging
import re
import threading
from pathlib import Path
from typing import Optional, Dict, Any

import duckdb

from .base import GeocodeCache
from .models import Failed, GeocodeProvider, GeocodeResult, result_from_dict

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "geocode"


def normalize_query(query: str) -> str:
    """Lower-case the query and collapse whitespace runs to underscores."""
    return re.sub(r"\s+", "_", (query or "").strip().lower())


def cache_key(provider: GeocodeProvider, query: str) -> str:
    """
    Provider-scoped cache key.

    Example:
        >>> cache_key(GeocodeProvider.NOMINATIM, "  123 Main St ")
        'geocode_osm_123_main_st'
    """
    return f"{CACHE_KEY_PREFIX}_{GeocodeProvider(provider).value}_{normalize_query(query)}"


def is_cacheable(result: GeocodeResult) -> bool:
    return not isinstance(result, Failed)


class InMemoryGeocodeCache(GeocodeCache):
    """Dict-backed cache for a single process (and for tests)."""

    def __init__(self):
        self._entries: Dict[str, tuple[GeocodeProvider, GeocodeResult]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, provider: GeocodeProvider, query: str) -> Optional[GeocodeResult]:
        entry = self._entries.get(cache_key(provider, query))
        return entry[1] if entry else None

    def put(self, provider: GeocodeProvider, query: str, result: GeocodeResult) -> bool:
        if not is_cacheable(result):
            logger.debug(f"Not caching failed result for '{query}'")
            return False
        with self._lock:
            self._entries[cache_key(provider, query)] = (GeocodeProvider(provider), result)
        return True

    def clear(self, provider: Optional[GeocodeProvider] = None) -> int:
        with self._lock:
            if provider is None:
                removed = len(self._entries)
                self._entries.clear()
                return removed
            provider = GeocodeProvider(provider)
            doomed = [k for k, (p, _) in self._entries.items() if p == provider]
            for k in doomed:
                del self._entries[k]
            return len(doomed)


class DuckDBGeocodeCache(GeocodeCache):
    """
    DuckDB cache backend for geocoding results.

    One row per provider-scoped key; the result is stored as JSON so the
    table is readable from any DuckDB client.
    """

    DDL = """
    CREATE TABLE IF NOT EXISTS geocode_cache (
        cache_key TEXT PRIMARY KEY,
        provider TEXT,
        query TEXT,
        status TEXT,
        result_json TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );
    """

    def __init__(self, db_path: Path | str):
        """
        Initialize DuckDB cache.

        Args:
            db_path: Path to DuckDB database file (":memory:" for a throwaway cache)
        """
        self.db_path = db_path if db_path == ":memory:" else Path(db_path)
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.con = duckdb.connect(str(self.db_path))
        self.con.execute(self.DDL)
        self._lock = threading.Lock()
        logger.info(f"Initialized DuckDB geocode cache: {self.db_path}")

    def get(self, provider: GeocodeProvider, query: str) -> Optional[GeocodeResult]:
        with self._lock:
            row = self.con.execute(
                "SELECT result_json FROM geocode_cache WHERE cache_key = ?",
                [cache_key(provider, query)],
            ).fetchone()
        if not row:
            return None
        try:
            return result_from_dict(json.loads(row[0]))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable cache entry for '{query}': {e}")
            return None

    def put(self, provider: GeocodeProvider, query: str, result: GeocodeResult) -> bool:
        if not is_cacheable(result):
            logger.debug(f"Not caching failed result for '{query}'")
            return False
        provider = GeocodeProvider(provider)
        with self._lock:
            self.con.execute(
                """
                INSERT INTO geocode_cache (cache_key, provider, query, status, result_json)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(cache_key) DO UPDATE SET
                    query = excluded.query,
                    status = excluded.status,
                    result_json = excluded.result_json,
                    created_at = CURRENT_TIMESTAMP
                """,
                [
                    cache_key(provider, query),
                    provider.value,
                    query,
                    result.status.value,
                    json.dumps(result.to_dict()),
                ],
            )
        return True

    def clear(self, provider: Optional[GeocodeProvider] = None) -> int:
        with self._lock:
            if provider is None:
                removed = self.con.execute("SELECT COUNT(*) FROM geocode_cache").fetchone()[0]
                self.con.execute("DELETE FROM geocode_cache")
            else:
                value = GeocodeProvider(provider).value
                removed = self.con.execute(
                    "SELECT COUNT(*) FROM geocode_cache WHERE provider = ?", [value]
                ).fetchone()[0]
                self.con.execute("DELETE FROM geocode_cache WHERE provider = ?", [value])
        logger.info(f"Cleared {removed} cached geocodes" + (f" for {provider}" if provider else ""))
        return int(removed)

    def close(self) -> None:
        """Close database connection."""
        if self.con:
            self.con.close()
            self.con = None
            logger.info("Closed DuckDB connection")

    def export_to_csv(self, csv_path: Path | str) -> int:
        """
        Export all cached entries to CSV.

        Args:
            csv_path: Path to output CSV file

        Returns:
            Number of entries exported
        """
        csv_path = Path(csv_path)
        df = self.con.execute(
            "SELECT cache_key, provider, query, status, result_json, created_at "
            "FROM geocode_cache ORDER BY created_at DESC"
        ).df()

        if len(df) > 0:
            csv_path.parent.mkdir(parents=True, exist_ok=True)
            df.to_csv(csv_path, index=False)
            logger.info(f"Exported {len(df)} cache entries to {csv_path}")

        return len(df)

    def get_summary(self) -> Dict[str, Any]:
        """Get summary statistics, counts per provider and status."""
        df = self.con.execute(
            "SELECT provider, status, COUNT(*) AS n FROM geocode_cache GROUP BY provider, status"
        ).df()

        by_provider = {p: int(n) for p, n in df.groupby("provider")["n"].sum().items()} if len(df) else {}
        by_status = {s: int(n) for s, n in df.groupby("status")["n"].sum().items()} if len(df) else {}
        return {
            "total": int(df["n"].sum()) if len(df) else 0,
            "by_provider": by_provider,
            "by_status": by_status,
        }
