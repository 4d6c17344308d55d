from __future__ import annotations

import json
import logging
import sqlite3
import time
from typing import Dict, Mapping

from .analyzers.patterns import PatternStats
from .types import PatternType

logger = logging.getLogger(__name__)


class SqlitePatternStore:
    """Per-pattern outcome statistics, one row per pattern type."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._ensure_schema()

    def close(self) -> None:
        self._conn.close()

    def save_stats(self, stats: Mapping[PatternType, PatternStats]) -> int:
        rows = [
            (
                pattern.value,
                int(s.sample_count),
                int(s.success_count),
                float(s.success_move_sum),
                json.dumps(dict(s.timeframe_counts), sort_keys=True),
                time.time(),
            )
            for pattern, s in stats.items()
        ]
        self._conn.executemany(
            "INSERT INTO pattern_stats(pattern_type, sample_count, success_count, success_move_sum, "
            "timeframe_counts_json, updated_epoch_s) VALUES(?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(pattern_type) DO UPDATE SET "
            "sample_count=excluded.sample_count, success_count=excluded.success_count, "
            "success_move_sum=excluded.success_move_sum, "
            "timeframe_counts_json=excluded.timeframe_counts_json, "
            "updated_epoch_s=excluded.updated_epoch_s",
            rows,
        )
        self._conn.commit()
        logger.info("Saved statistics for %d pattern types to %s", len(rows), self._db_path)
        return len(rows)

    def load_stats(self) -> Dict[PatternType, PatternStats]:
        cur = self._conn.execute(
            "SELECT pattern_type, sample_count, success_count, success_move_sum, timeframe_counts_json "
            "FROM pattern_stats"
        )
        out: Dict[PatternType, PatternStats] = {}
        for name, samples, successes, move_sum, counts_json in cur.fetchall():
            try:
                pattern = PatternType(str(name))
            except ValueError:
                logger.warning("Skipping stored statistics for unknown pattern type %r", name)
                continue
            counts = json.loads(counts_json) if counts_json else {}
            out[pattern] = PatternStats(
                pattern_type=pattern,
                sample_count=int(samples),
                success_count=int(successes),
                success_move_sum=float(move_sum),
                timeframe_counts=tuple(sorted((str(k), int(v)) for k, v in counts.items())),
            )
        return out

    def _ensure_schema(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS schema_version(
                version INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS pattern_stats(
                pattern_type TEXT PRIMARY KEY,
                sample_count INTEGER NOT NULL,
                success_count INTEGER NOT NULL,
                success_move_sum REAL NOT NULL,
                timeframe_counts_json TEXT NOT NULL,
                updated_epoch_s REAL NOT NULL
            );
            """
        )
        cur = self._conn.execute("SELECT COUNT(*) FROM schema_version")
        if int(cur.fetchone()[0]) == 0:
            self._conn.execute("INSERT INTO schema_version(version) VALUES(1)")
        self._conn.commit()
