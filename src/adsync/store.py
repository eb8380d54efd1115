from __future__ import annotations

import re
import sqlite3
from pathlib import Path
from typing import Any, Iterable

from adsync.errors import StoreError
from adsync.util import now_utc_iso

_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Base table name -> (column DDL, natural key). Profiles prefix the table name.
TABLES: dict[str, tuple[str, tuple[str, ...]]] = {
    "meta_insights": (
        """
        date TEXT NOT NULL,
        campaign TEXT NOT NULL,
        spend REAL,
        impressions INTEGER,
        clicks INTEGER,
        conversion REAL,
        conversion_value REAL,
        ctr REAL,
        cpc REAL,
        cvr REAL,
        cpm REAL,
        cpa REAL,
        aov REAL,
        roas REAL,
        updated_at TEXT NOT NULL
        """,
        ("date", "campaign"),
    ),
    "naver_insights": (
        """
        date TEXT NOT NULL,
        campaign TEXT NOT NULL,
        spend REAL,
        impressions INTEGER,
        clicks INTEGER,
        conversion REAL,
        conversion_value REAL,
        quality_index REAL,
        ctr REAL,
        cpc REAL,
        cvr REAL,
        cpm REAL,
        cpa REAL,
        aov REAL,
        roas REAL,
        rank_avg REAL,
        updated_at TEXT NOT NULL
        """,
        ("date", "campaign"),
    ),
    "google_insights": (
        """
        date TEXT NOT NULL,
        campaign TEXT,
        campaign_id TEXT NOT NULL,
        spend REAL,
        impressions INTEGER,
        clicks INTEGER,
        conversion REAL,
        conversion_value REAL,
        ctr REAL,
        cpc REAL,
        cvr REAL,
        cpm REAL,
        cpa REAL,
        aov REAL,
        roas REAL,
        search_impr_share REAL,
        quality_score REAL,
        top_impr_rate REAL,
        updated_at TEXT NOT NULL
        """,
        ("date", "campaign_id"),
    ),
    "meta_adset_insights": (
        """
        date_start TEXT NOT NULL,
        date_stop TEXT,
        time_zone TEXT,
        campaign_name TEXT,
        adset_name TEXT,
        adset_id TEXT NOT NULL,
        impressions INTEGER,
        reach INTEGER,
        clicks INTEGER,
        ctr REAL,
        cpc REAL,
        landing_page_views REAL,
        cost_per_landing_page_view REAL,
        spend REAL,
        cpm REAL,
        frequency REAL,
        view_content REAL,
        add_to_cart REAL,
        purchase REAL,
        cost_per_result REAL,
        learning_phase TEXT,
        optimization_goal TEXT,
        daily_budget REAL,
        bid_strategy TEXT,
        status TEXT,
        updated_at TEXT NOT NULL
        """,
        ("date_start", "adset_id"),
    ),
}


def _ident(name: str) -> str:
    if not _IDENT_RE.match(name or ""):
        raise StoreError(f"Invalid identifier: {name!r}")
    return name


class Store:
    """
    SQLite-backed sink for normalized daily rows.

    Writes are insert-or-update keyed by each table's natural key columns.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path

    def connect(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL;")
        return conn

    def init(self, prefixes: Iterable[str] = ("",)) -> None:
        stmts: list[str] = []
        for prefix in prefixes:
            for base, (columns, key) in TABLES.items():
                table = _ident(f"{prefix}{base}")
                stmts.append(
                    f"CREATE TABLE IF NOT EXISTS {table} ({columns.rstrip()},\n"
                    f"  PRIMARY KEY ({', '.join(key)})\n);"
                )
        try:
            with self.connect() as conn:
                conn.executescript("\n".join(stmts))
        except sqlite3.Error as e:
            raise StoreError(f"schema init failed: {e}") from e

    def upsert(self, table: str, rows: list[dict[str, Any]], conflict_keys: list[str]) -> int:
        """
        Insert-or-update `rows` into `table`, resolving conflicts on `conflict_keys`.

        Every row gets the same `updated_at` stamp. Any SQLite error is raised
        as `StoreError`; nothing is retried.
        """
        if not rows:
            return 0
        table = _ident(table)
        keys = [_ident(k) for k in conflict_keys]
        if not keys:
            raise StoreError("conflict_keys must not be empty")

        now = now_utc_iso()
        stamped = [{**r, "updated_at": now} for r in rows]

        columns: list[str] = []
        for r in stamped:
            for c in r:
                if c not in columns:
                    columns.append(_ident(c))
        missing = [k for k in keys if k not in columns]
        if missing:
            raise StoreError(f"rows are missing conflict key column(s): {', '.join(missing)}")

        updates = [c for c in columns if c not in keys]
        set_clause = ", ".join(f"{c}=excluded.{c}" for c in updates)
        sql = (
            f"INSERT INTO {table}({', '.join(columns)}) "
            f"VALUES({', '.join('?' for _ in columns)}) "
            f"ON CONFLICT({', '.join(keys)}) DO UPDATE SET {set_clause}"
        )
        params = [tuple(r.get(c) for c in columns) for r in stamped]
        try:
            with self.connect() as conn:
                conn.executemany(sql, params)
        except sqlite3.Error as e:
            raise StoreError(f"upsert into {table} failed: {e}") from e
        return len(stamped)

    def count_rows(self, table: str, *, date_column: str, day: str) -> int:
        table = _ident(table)
        date_column = _ident(date_column)
        try:
            with self.connect() as conn:
                row = conn.execute(
                    f"SELECT COUNT(*) FROM {table} WHERE {date_column}=?", (day,)
                ).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"count on {table} failed: {e}") from e
        return int(row[0]) if row else 0

    def fetch_rows(self, table: str, *, date_column: str, day: str) -> list[dict[str, Any]]:
        table = _ident(table)
        date_column = _ident(date_column)
        try:
            with self.connect() as conn:
                rows = conn.execute(
                    f"SELECT * FROM {table} WHERE {date_column}=?", (day,)
                ).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"select on {table} failed: {e}") from e
        return [dict(r) for r in rows]
