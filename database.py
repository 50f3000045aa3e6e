import asyncio
import logging
import os
import sqlite3
from contextlib import contextmanager
from typing import Optional, Protocol

from models.responses import UnifiedReport

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = os.path.join(os.path.dirname(__file__), "reports.db")


class ReportSink(Protocol):
    async def store(self, handle: str, report: UnifiedReport) -> None:
        ...


def init_db(db_path: str = DEFAULT_DB_PATH):
    conn = sqlite3.connect(db_path)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS reports (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            handle TEXT NOT NULL,
            overall_score REAL,
            degraded INTEGER NOT NULL DEFAULT 0,
            report_json TEXT NOT NULL,
            generated_at TEXT NOT NULL,
            created_at TEXT DEFAULT (datetime('now'))
        )
    """)
    conn.execute("CREATE INDEX IF NOT EXISTS idx_reports_handle ON reports (handle, generated_at)")
    conn.commit()
    conn.close()


@contextmanager
def get_db(db_path: str = DEFAULT_DB_PATH):
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


class SqliteReportSink:
    """Append-only history of finished reports. sqlite3 is blocking, so writes run in the default executor."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or DEFAULT_DB_PATH
        init_db(self.db_path)

    def _store_sync(self, handle: str, report: UnifiedReport) -> None:
        with get_db(self.db_path) as conn:
            conn.execute(
                "INSERT INTO reports (handle, overall_score, degraded, report_json, generated_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    handle,
                    report.overall_score,
                    int(report.degraded),
                    report.model_dump_json(),
                    report.generated_at.isoformat(),
                ),
            )
            conn.commit()

    async def store(self, handle: str, report: UnifiedReport) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._store_sync, handle, report)
        logger.info(f"Stored report for '{handle}' in {self.db_path}")

    def latest(self, handle: str) -> Optional[UnifiedReport]:
        with get_db(self.db_path) as conn:
            row = conn.execute(
                "SELECT report_json FROM reports WHERE handle = ? ORDER BY generated_at DESC, id DESC LIMIT 1",
                (handle,),
            ).fetchone()
        if row is None:
            return None
        return UnifiedReport.model_validate_json(row["report_json"])
