"""Check store — collaborator contracts plus the SQLite implementation.

The engine only talks to ``SiteSource`` and ``CheckStore``. ``SQLiteStore``
implements both on a single SQLite file with users / sites / checks tables.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Protocol

from .models import Check, Site, Status, User, utcnow

logger = logging.getLogger(__name__)

DB_PATH = Path("data") / "isitup.db"

TIMEFRAMES = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}


# ── Contracts ────────────────────────────────────────────────────────────────


class SiteSource(Protocol):
    def list_enabled_sites(self) -> list[Site]: ...

    def get_user(self, user_id: str) -> User | None: ...


class CheckStore(Protocol):
    def get_latest_check(self, site_id: str) -> Check | None: ...

    def insert_check(self, check: Check) -> None: ...

    def delete_checks_older_than(self, cutoff: datetime) -> int: ...


def window_start(timeframe: str, now: datetime | None = None) -> datetime:
    """Start of a ``24h`` / ``7d`` / ``30d`` window ending at *now*."""
    try:
        window = TIMEFRAMES[timeframe]
    except KeyError:
        raise ValueError(f"Unknown timeframe: {timeframe}") from None
    return (now or utcnow()) - window


# ── Timestamp encoding ───────────────────────────────────────────────────────
# Fixed-width UTC ISO strings so lexical order == chronological order.


def _ts(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _opt_bool(value: Any) -> bool | None:
    return None if value is None else bool(value)


# ── SQLite storage ───────────────────────────────────────────────────────────


class SQLiteStore:
    """SQLite-backed storage for users, sites and check results."""

    def __init__(self, db_path: Path | str | None = None) -> None:
        self._db_path = Path(db_path or DB_PATH)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None
        # Probes run in worker threads; serialise access to the shared connection
        self._lock = threading.RLock()
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
        return self._conn

    def _init_db(self) -> None:
        with self._lock:
            conn = self._get_conn()
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    email TEXT NOT NULL DEFAULT '',
                    discord_webhook_url TEXT
                );

                CREATE TABLE IF NOT EXISTS sites (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL DEFAULT '',
                    name TEXT NOT NULL,
                    url TEXT NOT NULL,
                    check_ssl INTEGER NOT NULL DEFAULT 1,
                    check_content TEXT,
                    enabled INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS checks (
                    id TEXT PRIMARY KEY,
                    site_id TEXT NOT NULL REFERENCES sites (id) ON DELETE CASCADE,
                    timestamp TEXT NOT NULL,
                    status TEXT NOT NULL,
                    http_status INTEGER,
                    response_time_ms INTEGER,
                    ssl_valid INTEGER,
                    ssl_expires_at TEXT,
                    dns_resolved INTEGER NOT NULL,
                    content_found INTEGER,
                    error_message TEXT
                );

                CREATE INDEX IF NOT EXISTS idx_checks_site
                    ON checks (site_id, timestamp DESC);
            """)
            conn.commit()

    # -- users ----------------------------------------------------------------

    def add_user(self, user: User) -> User:
        """Insert or replace a user."""
        with self._lock:
            conn = self._get_conn()
            conn.execute(
                "INSERT INTO users (id, email, discord_webhook_url) VALUES (?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET email = excluded.email, "
                "discord_webhook_url = excluded.discord_webhook_url",
                (user.id, user.email, user.discord_webhook_url),
            )
            conn.commit()
        return user

    def get_user(self, user_id: str) -> User | None:
        with self._lock:
            row = self._get_conn().execute(
                "SELECT * FROM users WHERE id = ?", (user_id,),
            ).fetchone()
        if not row:
            return None
        return User(id=row["id"], email=row["email"], discord_webhook_url=row["discord_webhook_url"])

    # -- sites ----------------------------------------------------------------

    def add_site(self, site: Site) -> Site:
        """Insert or replace a site. Existing check history is kept."""
        with self._lock:
            conn = self._get_conn()
            conn.execute(
                "INSERT INTO sites "
                "(id, user_id, name, url, check_ssl, check_content, enabled, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET user_id = excluded.user_id, "
                "name = excluded.name, url = excluded.url, check_ssl = excluded.check_ssl, "
                "check_content = excluded.check_content, enabled = excluded.enabled",
                (
                    site.id, site.user_id, site.name, site.url, int(site.check_ssl),
                    site.check_content, int(site.enabled), _ts(site.created_at),
                ),
            )
            conn.commit()
        return site

    def get_site(self, site_id: str) -> Site | None:
        with self._lock:
            row = self._get_conn().execute(
                "SELECT * FROM sites WHERE id = ?", (site_id,),
            ).fetchone()
        return _row_to_site(row) if row else None

    def list_sites(self) -> list[Site]:
        with self._lock:
            rows = self._get_conn().execute(
                "SELECT * FROM sites ORDER BY created_at",
            ).fetchall()
        return [_row_to_site(r) for r in rows]

    def list_enabled_sites(self) -> list[Site]:
        with self._lock:
            rows = self._get_conn().execute(
                "SELECT * FROM sites WHERE enabled = 1 ORDER BY created_at",
            ).fetchall()
        return [_row_to_site(r) for r in rows]

    # -- checks ---------------------------------------------------------------

    def insert_check(self, check: Check) -> None:
        with self._lock:
            conn = self._get_conn()
            conn.execute(
                "INSERT INTO checks "
                "(id, site_id, timestamp, status, http_status, response_time_ms, ssl_valid, "
                "ssl_expires_at, dns_resolved, content_found, error_message) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    check.id, check.site_id, _ts(check.timestamp), check.status.value,
                    check.http_status, check.response_time_ms,
                    None if check.ssl_valid is None else int(check.ssl_valid),
                    _ts(check.ssl_expires_at) if check.ssl_expires_at else None,
                    int(check.dns_resolved),
                    None if check.content_found is None else int(check.content_found),
                    check.error_message,
                ),
            )
            conn.commit()

    def get_latest_check(self, site_id: str) -> Check | None:
        """Most recent check for a site, or None if it was never checked."""
        with self._lock:
            row = self._get_conn().execute(
                "SELECT * FROM checks WHERE site_id = ? "
                "ORDER BY timestamp DESC LIMIT 1",
                (site_id,),
            ).fetchone()
        return _row_to_check(row) if row else None

    def get_history(
        self,
        site_id: str,
        since: datetime | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Check]:
        """Checks for a site, newest first."""
        with self._lock:
            rows = self._get_conn().execute(
                "SELECT * FROM checks WHERE site_id = ? AND timestamp >= ? "
                "ORDER BY timestamp DESC LIMIT ? OFFSET ?",
                (site_id, _ts(since) if since else "", limit, offset),
            ).fetchall()
        return [_row_to_check(r) for r in rows]

    def count_checks(self, site_id: str, since: datetime | None = None) -> int:
        with self._lock:
            row = self._get_conn().execute(
                "SELECT COUNT(*) AS n FROM checks WHERE site_id = ? AND timestamp >= ?",
                (site_id, _ts(since) if since else ""),
            ).fetchone()
        return row["n"]

    def uptime_percentage(self, site_id: str, timeframe: str = "24h") -> int | None:
        """Rounded share of ``up`` checks in the window; None without data."""
        with self._lock:
            row = self._get_conn().execute(
                "SELECT COUNT(*) AS total, "
                "SUM(CASE WHEN status = ? THEN 1 ELSE 0 END) AS up "
                "FROM checks WHERE site_id = ? AND timestamp >= ?",
                (Status.UP.value, site_id, _ts(window_start(timeframe))),
            ).fetchone()
        if not row["total"]:
            return None
        return round(row["up"] / row["total"] * 100)

    def average_response_time(self, site_id: str, timeframe: str = "24h") -> int | None:
        """Rounded mean response time in the window; None without data."""
        with self._lock:
            row = self._get_conn().execute(
                "SELECT AVG(response_time_ms) AS avg_ms FROM checks "
                "WHERE site_id = ? AND timestamp >= ? AND response_time_ms IS NOT NULL",
                (site_id, _ts(window_start(timeframe))),
            ).fetchone()
        return None if row["avg_ms"] is None else round(row["avg_ms"])

    def delete_checks_older_than(self, cutoff: datetime) -> int:
        """Remove checks with ``timestamp < cutoff``; returns the number removed."""
        with self._lock:
            conn = self._get_conn()
            cursor = conn.execute(
                "DELETE FROM checks WHERE timestamp < ?", (_ts(cutoff),),
            )
            conn.commit()
        logger.debug("Deleted %d checks older than %s", cursor.rowcount, cutoff.isoformat())
        return cursor.rowcount

    def close(self) -> None:
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None


# ── Row mapping ──────────────────────────────────────────────────────────────


def _row_to_site(row: sqlite3.Row) -> Site:
    return Site(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        url=row["url"],
        check_ssl=bool(row["check_ssl"]),
        check_content=row["check_content"],
        enabled=bool(row["enabled"]),
        created_at=_parse_ts(row["created_at"]),
    )


def _row_to_check(row: sqlite3.Row) -> Check:
    return Check(
        id=row["id"],
        site_id=row["site_id"],
        timestamp=_parse_ts(row["timestamp"]),
        status=Status(row["status"]),
        http_status=row["http_status"],
        response_time_ms=row["response_time_ms"],
        ssl_valid=_opt_bool(row["ssl_valid"]),
        ssl_expires_at=_parse_ts(row["ssl_expires_at"]),
        dns_resolved=bool(row["dns_resolved"]),
        content_found=_opt_bool(row["content_found"]),
        error_message=row["error_message"],
    )
