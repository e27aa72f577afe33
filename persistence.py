"""Persistence for dogs, class entries and competition runs.

Supports SQLite (default, local dev) and PostgreSQL (production).
Set DATABASE_URL env var to use Postgres; otherwise falls back to SQLite.

``Persistence`` satisfies the ``interfaces.ProgressionStore`` protocol used
by the auto-progression trigger and batch recalculation.
"""
from __future__ import annotations

import logging
import re
import sqlite3
import sys
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

import config
from interfaces import ClassLevelUpdate, ConcurrentUpdateError, DogNotFoundError, RunNotFoundError
from models import Dog, DogClass, Run

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Postgres compatibility layer
# ---------------------------------------------------------------------------

def _translate_sql(sql: str) -> str:
    """Translate SQLite SQL dialect to Postgres."""
    # Parameter placeholders: ? -> %s
    sql = sql.replace("?", "%s")
    # AUTOINCREMENT -> Postgres SERIAL
    sql = re.sub(
        r"INTEGER\s+PRIMARY\s+KEY\s+AUTOINCREMENT",
        "SERIAL PRIMARY KEY",
        sql,
        flags=re.IGNORECASE,
    )
    return sql


class _PgCursorResult:
    """Wraps a psycopg2 cursor to provide sqlite3-compatible attributes."""

    def __init__(self, cursor):
        self._cursor = cursor

    @property
    def rowcount(self) -> int:
        return self._cursor.rowcount

    def fetchone(self):
        return self._cursor.fetchone()

    def fetchall(self):
        return self._cursor.fetchall()

    def __iter__(self):
        return iter(self._cursor)


class _PgConnectionWrapper:
    """Wraps a psycopg2 connection so Persistence can use the same API as sqlite3."""

    def __init__(self, pg_conn, cursor_factory):
        self._conn = pg_conn
        self._cursor_factory = cursor_factory

    def execute(self, sql, params=None):
        cur = self._conn.cursor(cursor_factory=self._cursor_factory)
        cur.execute(_translate_sql(sql), params or ())
        return _PgCursorResult(cur)

    def executescript(self, sql):
        """Execute multiple SQL statements separated by semicolons."""
        cur = self._conn.cursor(cursor_factory=self._cursor_factory)
        for stmt in sql.split(";"):
            stmt = stmt.strip()
            if stmt:
                cur.execute(_translate_sql(stmt))
        return cur

    def commit(self):
        self._conn.commit()

    def rollback(self):
        self._conn.rollback()


RUN_COLUMNS = [
    "id",
    "dog_id",
    "date",
    "class_name",
    "level",
    "qualified",
    "placement",
    "time",
    "mach_points",
    "location",
    "notes",
    "created_at",
]

# Run fields a caller may change through update_run
_EDITABLE_RUN_FIELDS = {
    "date": "date",
    "competition_class": "class_name",
    "level": "level",
    "qualified": "qualified",
    "placement": "placement",
    "time": "time",
    "mach_points": "mach_points",
    "location": "location",
    "notes": "notes",
}


def _now() -> str:
    return datetime.utcnow().isoformat()


class Persistence:
    def __init__(self, db_path: Path = None):
        database_url = config.DATABASE_URL
        if database_url and db_path is None:
            import psycopg2
            import psycopg2.extras
            # Railway/Heroku give postgres:// but psycopg2 requires postgresql://
            if database_url.startswith("postgres://"):
                database_url = database_url.replace("postgres://", "postgresql://", 1)
            try:
                pg_conn = psycopg2.connect(database_url, connect_timeout=5)
            except Exception as exc:
                print(f"[persistence] FATAL: Cannot connect to Postgres "
                      f"(timeout 5s): {exc}", file=sys.stderr, flush=True)
                raise
            pg_conn.autocommit = False
            self.conn = _PgConnectionWrapper(pg_conn, psycopg2.extras.DictCursor)
            self.db_backend = "postgres"
            self.db_path = None
        else:
            self.db_path = Path(db_path or config.DB_PATH)
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            self.db_backend = "sqlite"
        # One connection is shared by every request thread
        self._lock = threading.RLock()
        self._init_db()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _init_db(self) -> None:
        self.conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS dogs (
                id              TEXT PRIMARY KEY,
                name            TEXT NOT NULL,
                registered_name TEXT DEFAULT '',
                active          INTEGER NOT NULL DEFAULT 1,
                version         INTEGER NOT NULL DEFAULT 0,
                created_at      TEXT NOT NULL,
                updated_at      TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS dog_classes (
                dog_id     TEXT NOT NULL REFERENCES dogs(id),
                class_name TEXT NOT NULL,
                level      TEXT NOT NULL,
                starting_level TEXT,
                PRIMARY KEY (dog_id, class_name)
            );

            CREATE TABLE IF NOT EXISTS runs (
                run_seq     INTEGER PRIMARY KEY AUTOINCREMENT,
                id          TEXT NOT NULL UNIQUE,
                dog_id      TEXT NOT NULL REFERENCES dogs(id),
                date        TEXT NOT NULL,
                class_name  TEXT NOT NULL,
                level       TEXT NOT NULL,
                qualified   INTEGER NOT NULL DEFAULT 0,
                placement   INTEGER,
                time        REAL,
                mach_points INTEGER,
                location    TEXT DEFAULT '',
                notes       TEXT DEFAULT '',
                created_at  TEXT NOT NULL,
                updated_at  TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_runs_dog_date ON runs(dog_id, date);
            CREATE INDEX IF NOT EXISTS idx_runs_q ON runs(dog_id, class_name, level, qualified);
            """
        )
        self.conn.commit()
        self._ensure_columns()

    def _get_table_columns(self, table_name: str) -> set:
        """Return set of column names for a table (works on both backends)."""
        if self.db_backend == "postgres":
            cur = self.conn.execute(
                "SELECT column_name FROM information_schema.columns WHERE table_name = ?",
                (table_name,),
            )
            return {row[0] for row in cur.fetchall()}
        cur = self.conn.execute(f"PRAGMA table_info({table_name})")
        return {row[1] for row in cur.fetchall()}

    def _ensure_columns(self) -> None:
        # dog_classes: starting_level added after the first release
        if "starting_level" not in self._get_table_columns("dog_classes"):
            self.conn.execute("ALTER TABLE dog_classes ADD COLUMN starting_level TEXT")
        self.conn.commit()

    @contextmanager
    def _transaction(self):
        """Serialize on the shared connection; commit on success, roll back on any error."""
        with self._lock:
            try:
                yield
            except Exception:
                self.conn.rollback()
                raise
            else:
                self.conn.commit()

    # ------------------------------------------------------------------
    # Row helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_run(row) -> Run:
        return Run(
            id=row["id"],
            dog_id=row["dog_id"],
            date=row["date"],
            competition_class=row["class_name"],
            level=row["level"],
            qualified=bool(row["qualified"]),
            placement=row["placement"],
            time=row["time"],
            mach_points=row["mach_points"],
            location=row["location"] or "",
            notes=row["notes"] or "",
            created_at=row["created_at"],
        )

    def _load_classes(self, dog_id: str) -> List[DogClass]:
        rows = self.conn.execute(
            "SELECT class_name, level, starting_level FROM dog_classes "
            "WHERE dog_id = ? ORDER BY class_name",
            (dog_id,),
        ).fetchall()
        return [DogClass(r["class_name"], r["level"], r["starting_level"]) for r in rows]

    def _row_to_dog(self, row) -> Dog:
        return Dog(
            id=row["id"],
            name=row["name"],
            classes=self._load_classes(row["id"]),
            registered_name=row["registered_name"] or "",
            active=bool(row["active"]),
            version=row["version"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _insert_class(self, dog_id: str, entry: DogClass) -> None:
        self.conn.execute(
            "INSERT INTO dog_classes(dog_id, class_name, level, starting_level) VALUES(?, ?, ?, ?)",
            (dog_id, entry.competition_class, entry.level, entry.starting_level or entry.level),
        )

    def _bump_version(self, dog_id: str, expected_version: Optional[int]) -> None:
        if expected_version is None:
            cur = self.conn.execute(
                "UPDATE dogs SET version = version + 1, updated_at = ? WHERE id = ?",
                (_now(), dog_id),
            )
            if cur.rowcount == 0:
                raise DogNotFoundError(f"Dog {dog_id} not found")
            return
        cur = self.conn.execute(
            "UPDATE dogs SET version = version + 1, updated_at = ? "
            "WHERE id = ? AND version = ?",
            (_now(), dog_id, expected_version),
        )
        if cur.rowcount == 0:
            raise ConcurrentUpdateError(
                f"Dog {dog_id} is no longer at version {expected_version}"
            )

    # ==================================================================
    # Dogs
    # ==================================================================

    def create_dog(
        self,
        name: str,
        classes: Iterable[DogClass],
        *,
        registered_name: str = "",
        dog_id: Optional[str] = None,
    ) -> Dog:
        dog_id = dog_id or str(uuid.uuid4())
        now = _now()
        with self._transaction():
            self.conn.execute(
                """
                INSERT INTO dogs(id, name, registered_name, active, version, created_at, updated_at)
                VALUES(?, ?, ?, 1, 0, ?, ?)
                """,
                (dog_id, name, registered_name, now, now),
            )
            for entry in classes:
                self._insert_class(dog_id, entry)
        return self.get_dog(dog_id)

    def get_dog(self, dog_id: str) -> Optional[Dog]:
        with self._lock:
            row = self.conn.execute("SELECT * FROM dogs WHERE id = ?", (dog_id,)).fetchone()
            return self._row_to_dog(row) if row else None

    def get_dog_by_name(self, name: str) -> Optional[Dog]:
        """Case-insensitive lookup, as used by bulk import."""
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM dogs WHERE LOWER(name) = LOWER(?) ORDER BY created_at LIMIT 1",
                (name.strip(),),
            ).fetchone()
            return self._row_to_dog(row) if row else None

    def list_dogs(self, active_only: bool = False) -> List[Dog]:
        with self._lock:
            if active_only:
                cur = self.conn.execute("SELECT * FROM dogs WHERE active = 1 ORDER BY name")
            else:
                cur = self.conn.execute("SELECT * FROM dogs ORDER BY name")
            return [self._row_to_dog(row) for row in cur.fetchall()]

    def update_dog(
        self,
        dog_id: str,
        *,
        name: Optional[str] = None,
        registered_name: Optional[str] = None,
        active: Optional[bool] = None,
    ) -> Dog:
        sets, params = [], []
        if name is not None:
            sets.append("name = ?")
            params.append(name)
        if registered_name is not None:
            sets.append("registered_name = ?")
            params.append(registered_name)
        if active is not None:
            sets.append("active = ?")
            params.append(int(active))
        sets.append("updated_at = ?")
        params.append(_now())
        with self._transaction():
            cur = self.conn.execute(
                f"UPDATE dogs SET {', '.join(sets)} WHERE id = ?", (*params, dog_id)
            )
            if cur.rowcount == 0:
                raise DogNotFoundError(f"Dog {dog_id} not found")
        return self.get_dog(dog_id)

    def replace_class_entries(
        self,
        dog_id: str,
        entries: Sequence[DogClass],
        expected_version: Optional[int] = None,
    ) -> Dog:
        """Swap the dog's whole class list in one transaction and bump its version.

        Each entry's starting level is stored as given (falling back to its
        level), so it becomes the point history is replayed from.
        """
        with self._transaction():
            self._bump_version(dog_id, expected_version)
            self.conn.execute("DELETE FROM dog_classes WHERE dog_id = ?", (dog_id,))
            for entry in entries:
                self._insert_class(dog_id, entry)
        return self.get_dog(dog_id)

    def delete_dog(self, dog_id: str) -> bool:
        """Hard delete a dog with its class entries and runs."""
        with self._transaction():
            n_runs = self.conn.execute("DELETE FROM runs WHERE dog_id = ?", (dog_id,)).rowcount
            self.conn.execute("DELETE FROM dog_classes WHERE dog_id = ?", (dog_id,))
            deleted = self.conn.execute("DELETE FROM dogs WHERE id = ?", (dog_id,)).rowcount
        if deleted:
            logger.info("Hard deleted dog %s and %d associated runs", dog_id, n_runs)
        return bool(deleted)

    def set_class_levels(
        self,
        dog_id: str,
        updates: Sequence[ClassLevelUpdate],
        expected_version: Optional[int] = None,
    ) -> None:
        """Write all class levels in one transaction and bump the dog's version.

        A class the dog was not entered in is added with the update's level
        as its starting level; existing entries keep theirs.
        """
        with self._transaction():
            self._bump_version(dog_id, expected_version)
            for upd in updates:
                self.conn.execute(
                    """
                    INSERT INTO dog_classes(dog_id, class_name, level, starting_level)
                    VALUES(?, ?, ?, ?)
                    ON CONFLICT(dog_id, class_name) DO UPDATE SET level = excluded.level
                    """,
                    (dog_id, upd.competition_class, upd.level, upd.level),
                )

    # ==================================================================
    # Runs
    # ==================================================================

    def create_run(
        self,
        dog_id: str,
        date: str,
        competition_class: str,
        level: str,
        *,
        qualified: bool = False,
        placement: Optional[int] = None,
        time: Optional[float] = None,
        mach_points: Optional[int] = None,
        location: str = "",
        notes: str = "",
        run_id: Optional[str] = None,
    ) -> Run:
        run_id = run_id or str(uuid.uuid4())
        now = _now()
        with self._transaction():
            if self.conn.execute("SELECT 1 FROM dogs WHERE id = ?", (dog_id,)).fetchone() is None:
                raise DogNotFoundError(f"Dog {dog_id} not found")
            self.conn.execute(
                """
                INSERT INTO runs(id, dog_id, date, class_name, level, qualified, placement,
                                 time, mach_points, location, notes, created_at, updated_at)
                VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (run_id, dog_id, date, competition_class, level, int(bool(qualified)),
                 placement, time, mach_points, location or "", notes or "", now, now),
            )
        return self.get_run(run_id)

    def get_run(self, run_id: str) -> Optional[Run]:
        with self._lock:
            row = self.conn.execute(
                f"SELECT {', '.join(RUN_COLUMNS)} FROM runs WHERE id = ?", (run_id,)
            ).fetchone()
        return self._row_to_run(row) if row else None

    def get_runs_for_dog(self, dog_id: str) -> List[Run]:
        """All runs for a dog, oldest first; same-date runs in insertion order."""
        return self.list_runs(dog_id=dog_id, order="asc")

    def list_runs(
        self,
        dog_id: Optional[str] = None,
        competition_class: Optional[str] = None,
        level: Optional[str] = None,
        qualified: Optional[bool] = None,
        order: str = "desc",
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Run]:
        where, params = [], []
        if dog_id:
            where.append("dog_id = ?")
            params.append(dog_id)
        if competition_class:
            where.append("class_name = ?")
            params.append(competition_class)
        if level:
            where.append("level = ?")
            params.append(level)
        if qualified is not None:
            where.append("qualified = ?")
            params.append(int(qualified))
        direction = "ASC" if order.lower() == "asc" else "DESC"
        sql = f"SELECT {', '.join(RUN_COLUMNS)} FROM runs"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += f" ORDER BY date {direction}, run_seq {direction}"
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params.extend([int(limit), int(offset)])
        with self._lock:
            rows = self.conn.execute(sql, tuple(params)).fetchall()
        return [self._row_to_run(r) for r in rows]

    def count_qualifying_runs(self, dog_id: str, competition_class: str, level: str) -> int:
        with self._lock:
            row = self.conn.execute(
                "SELECT COUNT(*) FROM runs WHERE dog_id = ? AND class_name = ? "
                "AND level = ? AND qualified = 1",
                (dog_id, competition_class, level),
            ).fetchone()
        return int(row[0])

    def update_run(self, run_id: str, **changes: Any) -> Run:
        unknown = set(changes) - set(_EDITABLE_RUN_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update run fields: {sorted(unknown)}")
        sets, params = [], []
        for key, value in changes.items():
            if key == "qualified":
                value = int(bool(value))
            sets.append(f"{_EDITABLE_RUN_FIELDS[key]} = ?")
            params.append(value)
        sets.append("updated_at = ?")
        params.append(_now())
        with self._transaction():
            cur = self.conn.execute(
                f"UPDATE runs SET {', '.join(sets)} WHERE id = ?", (*params, run_id)
            )
            if cur.rowcount == 0:
                raise RunNotFoundError(f"Run {run_id} not found")
        return self.get_run(run_id)

    def delete_run(self, run_id: str) -> bool:
        with self._transaction():
            cur = self.conn.execute("DELETE FROM runs WHERE id = ?", (run_id,))
        return cur.rowcount > 0

    # ==================================================================
    # Stats
    # ==================================================================

    def get_db_stats(self) -> Dict[str, Any]:
        def _count(sql: str) -> int:
            with self._lock:
                return int(self.conn.execute(sql).fetchone()[0])

        return {
            "backend": self.db_backend,
            "dogs": _count("SELECT COUNT(*) FROM dogs"),
            "active_dogs": _count("SELECT COUNT(*) FROM dogs WHERE active = 1"),
            "runs": _count("SELECT COUNT(*) FROM runs"),
            "qualifying_runs": _count("SELECT COUNT(*) FROM runs WHERE qualified = 1"),
        }
