"""SQLite content store for generated tips and agent reflections.

Thread-safe: each thread gets its own SQLite connection via thread-local storage.
WAL mode allows concurrent reads across threads. Writes serialized via lock.
Tips and reflections are append-only; nothing here updates or deletes them.
"""

import json
import os
import sqlite3
import logging
import threading
from datetime import datetime, timezone
from typing import Optional, List, Dict

from core.errors import DuplicateContent, PersistenceError
from core.models import Category, CategoryStats, Difficulty, Reflection, Tip

logger = logging.getLogger(__name__)


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class Database:
    """SQLite store for tips, reflections and per-category stats.

    Thread-safe via thread-local connections + write lock.
    The scheduler thread and the Telegram polling thread each get their
    own connection.
    """

    def __init__(self, db_path: str = "data/tipsbot.db"):
        self.db_path = db_path
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)

        self._lock = threading.Lock()
        self._local = threading.local()
        self._closed = False

        self._init_tables()

    def _make_connection(self) -> sqlite3.Connection:
        """Create a new SQLite connection configured for WAL mode."""
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=30000")
        return conn

    @property
    def conn(self) -> sqlite3.Connection:
        """Thread-local connection, one per thread."""
        if not hasattr(self._local, "conn") or self._local.conn is None:
            self._local.conn = self._make_connection()
        return self._local.conn

    def _init_tables(self):
        """Create tables if they don't exist."""
        with self._lock:
            self.conn.executescript("""
                CREATE TABLE IF NOT EXISTS tips (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    text TEXT NOT NULL,
                    category TEXT NOT NULL,
                    difficulty TEXT NOT NULL DEFAULT 'medium',
                    topics TEXT,
                    date TEXT NOT NULL,
                    verification_score REAL DEFAULT 0,
                    feedback TEXT,
                    UNIQUE(category, text)
                );

                CREATE TABLE IF NOT EXISTS reflections (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    tip TEXT NOT NULL,
                    reflection TEXT NOT NULL,
                    category TEXT NOT NULL,
                    date TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_tips_category ON tips(category);
                CREATE INDEX IF NOT EXISTS idx_tips_date ON tips(date DESC);
                CREATE INDEX IF NOT EXISTS idx_reflections_date ON reflections(date DESC);
                CREATE INDEX IF NOT EXISTS idx_reflections_category ON reflections(category);
            """)
            self.conn.commit()
        logger.debug("Database tables initialized")

    # ── Write helpers (locked) ────────────────────────────────────────

    def _execute_write(self, query: str, params: tuple = ()) -> sqlite3.Cursor:
        """Execute a write query with thread lock."""
        with self._lock:
            cursor = self.conn.execute(query, params)
            self.conn.commit()
            return cursor

    # ── Tips ─────────────────────────────────────────────────────────

    def tip_exists(self, text: str, category: Category) -> bool:
        """Check for an already normalized text within a category."""
        row = self.conn.execute(
            "SELECT 1 FROM tips WHERE text = ? AND category = ? LIMIT 1",
            (text, category.value),
        ).fetchone()
        return row is not None

    def save_tip(self, tip: Tip) -> int:
        """Insert a tip.

        Raises DuplicateContent when the (category, text) index rejects it,
        PersistenceError for anything else sqlite complains about.
        """
        try:
            cursor = self._execute_write(
                """INSERT INTO tips
                   (text, category, difficulty, topics, date,
                    verification_score, feedback)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    tip.text,
                    tip.category.value,
                    tip.difficulty.value,
                    json.dumps(tip.topics),
                    tip.date.isoformat(),
                    tip.verification_score,
                    json.dumps(tip.feedback),
                ),
            )
        except sqlite3.IntegrityError as e:
            raise DuplicateContent(
                f"Tip already stored for {tip.category.value}"
            ) from e
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to save tip: {e}", tip=tip) from e
        return cursor.lastrowid

    def get_recent_tips(
        self, category: Optional[Category] = None, limit: int = 15
    ) -> List[Tip]:
        """Newest first, optionally scoped to one category."""
        query = "SELECT * FROM tips"
        params: list = []
        if category:
            query += " WHERE category = ?"
            params.append(category.value)
        query += " ORDER BY date DESC, id DESC LIMIT ?"
        params.append(limit)
        rows = self.conn.execute(query, params).fetchall()
        return [self._row_to_tip(row) for row in rows]

    def get_category_stats(self) -> Dict[Category, CategoryStats]:
        """Tip count and most recent date per category."""
        stats = {c: CategoryStats() for c in Category}
        rows = self.conn.execute(
            """SELECT category, COUNT(*) AS count, MAX(date) AS last_sent
               FROM tips GROUP BY category"""
        ).fetchall()
        for row in rows:
            try:
                category = Category(row["category"])
            except ValueError:
                logger.warning(f"Ignoring unknown category in store: {row['category']}")
                continue
            stats[category] = CategoryStats(
                count=row["count"], last_sent=_parse_date(row["last_sent"])
            )
        return stats

    def count_tips(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM tips").fetchone()[0]

    @staticmethod
    def _row_to_tip(row: sqlite3.Row) -> Tip:
        return Tip(
            text=row["text"],
            category=Category(row["category"]),
            difficulty=Difficulty(row["difficulty"]),
            topics=json.loads(row["topics"] or "[]"),
            date=_parse_date(row["date"]),
            verification_score=row["verification_score"] or 0,
            feedback=json.loads(row["feedback"] or "[]"),
            display_text=row["text"],
        )

    # ── Reflections ──────────────────────────────────────────────────

    def save_reflection(self, reflection: Reflection) -> int:
        try:
            cursor = self._execute_write(
                """INSERT INTO reflections (tip, reflection, category, date)
                   VALUES (?, ?, ?, ?)""",
                (
                    reflection.tip,
                    reflection.reflection,
                    reflection.category.value,
                    reflection.date.isoformat(),
                ),
            )
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to save reflection: {e}") from e
        return cursor.lastrowid

    def get_recent_reflections(self, limit: int = 10) -> List[Reflection]:
        rows = self.conn.execute(
            "SELECT * FROM reflections ORDER BY date DESC, id DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [
            Reflection(
                tip=row["tip"],
                reflection=row["reflection"],
                category=Category(row["category"]),
                date=_parse_date(row["date"]),
            )
            for row in rows
        ]

    # ── Maintenance ──────────────────────────────────────────────────

    def get_db_size_mb(self) -> float:
        """Get database file size in MB (including WAL)."""
        try:
            size = os.path.getsize(self.db_path)
            wal_path = self.db_path + "-wal"
            if os.path.exists(wal_path):
                size += os.path.getsize(wal_path)
            return round(size / (1024 * 1024), 2)
        except OSError:
            return 0.0

    def close(self):
        """Close the calling thread's connection cleanly. Idempotent."""
        if self._closed:
            return
        self._closed = True
        try:
            with self._lock:
                conn = self.conn
                conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
                conn.close()
                self._local.conn = None
            logger.debug("Database connection closed")
        except sqlite3.Error as e:
            logger.warning(f"Error closing DB: {e}")
