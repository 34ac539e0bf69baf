import json
import logging
import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple

from db_pool import SQLiteConnectionPool

logger = logging.getLogger(__name__)

DB_PATH = os.getenv("DB_PATH", "data.db")

# Initialize connection pool
_pool = SQLiteConnectionPool(DB_PATH, max_connections=10)

# kind -> (table, key column, parent column)
_TABLES: Dict[str, Tuple[str, str, Optional[str]]] = {
    "sheet": ("sheets", "sheet_id", None),
    "topic": ("topics", "topic_id", "sheet_id"),
    "subpattern": ("subpatterns", "subpattern_id", "topic_id"),
    "problem": ("problems", "problem_id", "subpattern_id"),
}

CHILD_KIND: Dict[str, str] = {"sheet": "topic", "topic": "subpattern", "subpattern": "problem"}
PARENT_KIND: Dict[str, str] = {child: parent for parent, child in CHILD_KIND.items()}
KINDS: Sequence[str] = ("sheet", "topic", "subpattern", "problem")

_COLUMNS: Dict[str, str] = {
    "sheet": "sheet_id, title, description, created_at, is_deleted",
    "topic": "topic_id, sheet_id, title, position, is_deleted, created_at",
    "subpattern": "subpattern_id, topic_id, title, position, is_deleted, created_at",
    "problem": (
        "problem_id, subpattern_id, title, url, platform, platform_id, "
        "position, is_deleted, created_at"
    ),
}

_PROFILE_COLUMNS = (
    "user_id, email, display_name, role, created_at, last_active, completed_problems, "
    "streak_start, current_streak, max_streak, last_solved_date"
)


def _conn():
    """Return a context manager for acquiring a pooled SQLite connection."""
    return _pool.get_connection()


def transaction():
    """Return a context manager wrapping an immediate write transaction."""
    return _pool.transaction()


def _exec(sql: str, params: Iterable = ()) -> int:
    with _pool.get_connection() as con:
        cur = con.execute(sql, tuple(params))
        con.commit()
        return cur.rowcount


def _query(sql: str, params: Iterable = (), con: Optional[sqlite3.Connection] = None) -> list[sqlite3.Row]:
    if con is not None:
        return con.execute(sql, tuple(params)).fetchall()
    with _pool.get_connection() as pooled:
        return pooled.execute(sql, tuple(params)).fetchall()


def _utc_iso(value: Optional[datetime] = None) -> str:
    moment = value or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _normalize_ts(value: Any) -> Optional[str]:
    """Re-emit a stored timestamp in the fixed-width UTC form used for ordering."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _utc_iso(value)
    return _utc_iso(datetime.fromisoformat(str(value).replace("Z", "+00:00")))


def json_dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, sort_keys=True)


def table_for(kind: str) -> Tuple[str, str, Optional[str]]:
    try:
        return _TABLES[kind]
    except KeyError:
        raise ValueError(f"unknown entity kind: {kind}") from None


# -------------- schema helpers --------------
def _add_column_if_missing(con: sqlite3.Connection, table: str, column: str, definition: str) -> None:
    info = con.execute(f"PRAGMA table_info({table})").fetchall()
    existing = {row[1] for row in info}
    if column not in existing:
        con.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")
        logger.info("Added column %s.%s", table, column)


def init():
    Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    with _conn() as con:
        con.executescript(
            """
            PRAGMA foreign_keys = ON;
            PRAGMA journal_mode=WAL;

            CREATE TABLE IF NOT EXISTS sheets (
              sheet_id     TEXT PRIMARY KEY,
              title        TEXT NOT NULL,
              description  TEXT NOT NULL DEFAULT '',
              created_at   TEXT NOT NULL,
              is_deleted   INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS topics (
              topic_id     TEXT PRIMARY KEY,
              sheet_id     TEXT NOT NULL,
              title        TEXT NOT NULL,
              position     INTEGER NOT NULL,
              is_deleted   INTEGER NOT NULL DEFAULT 0,
              created_at   TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_topics_sheet ON topics(sheet_id, is_deleted, position);

            CREATE TABLE IF NOT EXISTS subpatterns (
              subpattern_id TEXT PRIMARY KEY,
              topic_id      TEXT NOT NULL,
              title         TEXT NOT NULL,
              position      INTEGER NOT NULL,
              is_deleted    INTEGER NOT NULL DEFAULT 0,
              created_at    TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_subpatterns_topic ON subpatterns(topic_id, is_deleted, position);

            CREATE TABLE IF NOT EXISTS problems (
              problem_id    TEXT PRIMARY KEY,
              subpattern_id TEXT NOT NULL,
              title         TEXT NOT NULL,
              url           TEXT NOT NULL DEFAULT '',
              platform      TEXT NOT NULL DEFAULT 'Other'
                            CHECK (platform IN ('LeetCode', 'GFG', 'Other')),
              platform_id   TEXT NOT NULL DEFAULT '',
              position      INTEGER NOT NULL,
              is_deleted    INTEGER NOT NULL DEFAULT 0,
              created_at    TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_problems_subpattern ON problems(subpattern_id, is_deleted, position);

            CREATE TABLE IF NOT EXISTS user_profiles (
              user_id            TEXT PRIMARY KEY,
              email              TEXT,
              display_name       TEXT,
              role               TEXT NOT NULL DEFAULT 'user' CHECK (role IN ('admin', 'user')),
              created_at         TEXT NOT NULL,
              last_active        TEXT NOT NULL,
              completed_problems TEXT NOT NULL DEFAULT '{}',
              current_streak     INTEGER NOT NULL DEFAULT 0,
              max_streak         INTEGER NOT NULL DEFAULT 0,
              last_solved_date   TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_user_profiles_active ON user_profiles(last_active DESC);

            CREATE TABLE IF NOT EXISTS notes (
              user_id      TEXT NOT NULL,
              problem_id   TEXT NOT NULL,
              content      TEXT NOT NULL DEFAULT '',
              updated_at   TEXT NOT NULL,
              PRIMARY KEY (user_id, problem_id)
            );
            """
        )
        _add_column_if_missing(con, "user_profiles", "streak_start", "TEXT")
        con.commit()


# -------------- catalog: reads --------------
def get_entity(kind: str, entity_id: str, con: Optional[sqlite3.Connection] = None) -> Optional[sqlite3.Row]:
    table, key, _ = table_for(kind)
    rows = _query(f"SELECT {_COLUMNS[kind]} FROM {table} WHERE {key} = ?", (entity_id,), con=con)
    return rows[0] if rows else None


def locate_entity(entity_id: str) -> Optional[Tuple[str, sqlite3.Row]]:
    """Find which kind stores ``entity_id``; keys are unique across kinds."""
    for kind in KINDS:
        row = get_entity(kind, entity_id)
        if row is not None:
            return kind, row
    return None


def list_sheets(include_deleted: bool = False) -> list[sqlite3.Row]:
    if include_deleted:
        return _query(
            f"SELECT {_COLUMNS['sheet']} FROM sheets ORDER BY created_at DESC, rowid DESC"
        )
    return _query(
        f"SELECT {_COLUMNS['sheet']} FROM sheets WHERE is_deleted = 0 ORDER BY created_at DESC, rowid DESC"
    )


def list_children(
    parent_kind: str,
    parent_id: str,
    con: Optional[sqlite3.Connection] = None,
) -> list[sqlite3.Row]:
    """Live children of ``parent_id`` ascending by position; insertion order breaks ties."""
    child_kind = CHILD_KIND[parent_kind]
    table, _, parent_col = table_for(child_kind)
    return _query(
        f"""
        SELECT {_COLUMNS[child_kind]}
        FROM {table}
        WHERE {parent_col} = ? AND is_deleted = 0
        ORDER BY position ASC, rowid ASC
        """,
        (parent_id,),
        con=con,
    )


def count_active_children(
    parent_kind: str,
    parent_id: str,
    con: Optional[sqlite3.Connection] = None,
) -> int:
    child_kind = CHILD_KIND.get(parent_kind)
    if child_kind is None:
        return 0
    table, _, parent_col = table_for(child_kind)
    rows = _query(
        f"SELECT COUNT(*) AS n FROM {table} WHERE {parent_col} = ? AND is_deleted = 0",
        (parent_id,),
        con=con,
    )
    return int(rows[0]["n"]) if rows else 0


def next_position(
    parent_kind: str,
    parent_id: str,
    con: Optional[sqlite3.Connection] = None,
) -> int:
    """One past the highest live sibling position; equals count + 1 for a gapless group."""
    child_kind = CHILD_KIND[parent_kind]
    table, _, parent_col = table_for(child_kind)
    rows = _query(
        f"SELECT COALESCE(MAX(position), 0) + 1 AS p FROM {table} WHERE {parent_col} = ? AND is_deleted = 0",
        (parent_id,),
        con=con,
    )
    return int(rows[0]["p"])


def list_deleted(kind: str, limit: int = 200) -> list[sqlite3.Row]:
    table, _, _ = table_for(kind)
    return _query(
        f"SELECT {_COLUMNS[kind]} FROM {table} WHERE is_deleted = 1 ORDER BY rowid DESC LIMIT ?",
        (int(limit),),
    )


def list_active_problems() -> list[sqlite3.Row]:
    return _query(
        f"SELECT {_COLUMNS['problem']} FROM problems WHERE is_deleted = 0 ORDER BY rowid ASC"
    )


def list_parent_links(kind: str) -> list[sqlite3.Row]:
    """Return ``(key, parent, is_deleted)`` for every stored row of ``kind``."""
    table, key, parent_col = table_for(kind)
    if parent_col is None:
        return _query(f"SELECT {key} AS key, NULL AS parent, is_deleted FROM {table}")
    return _query(f"SELECT {key} AS key, {parent_col} AS parent, is_deleted FROM {table}")


# -------------- catalog: writes --------------
def insert_sheet(sheet_id: str, title: str, description: str = "", created_at: Optional[datetime] = None) -> None:
    _exec(
        "INSERT INTO sheets(sheet_id, title, description, created_at, is_deleted) VALUES (?,?,?,?,0)",
        (sheet_id, title, description or "", _utc_iso(created_at)),
    )


def insert_child(
    kind: str,
    entity_id: str,
    parent_id: str,
    title: str,
    extra: Optional[Mapping[str, Any]] = None,
) -> int:
    """Append a child after the parent's live siblings and return its position."""
    table, key, parent_col = table_for(kind)
    parent_kind = PARENT_KIND[kind]
    extra = dict(extra or {})
    with transaction() as con:
        position = next_position(parent_kind, parent_id, con=con)
        if kind == "problem":
            con.execute(
                """
                INSERT INTO problems(problem_id, subpattern_id, title, url, platform, platform_id,
                                     position, is_deleted, created_at)
                VALUES (?,?,?,?,?,?,?,0,?)
                """,
                (
                    entity_id,
                    parent_id,
                    title,
                    extra.get("url") or "",
                    extra.get("platform") or "Other",
                    extra.get("platform_id") or "",
                    position,
                    _utc_iso(),
                ),
            )
        else:
            con.execute(
                f"""
                INSERT INTO {table}({key}, {parent_col}, title, position, is_deleted, created_at)
                VALUES (?,?,?,?,0,?)
                """,
                (entity_id, parent_id, title, position, _utc_iso()),
            )
    return position


def insert_problems_batch(subpattern_id: str, rows: Sequence[Mapping[str, Any]]) -> list[Tuple[str, int]]:
    """Append all ``rows`` to the sub-pattern in one transaction."""
    inserted: list[Tuple[str, int]] = []
    with transaction() as con:
        position = next_position("subpattern", subpattern_id, con=con) - 1
        created_at = _utc_iso()
        for row in rows:
            position += 1
            con.execute(
                """
                INSERT INTO problems(problem_id, subpattern_id, title, url, platform, platform_id,
                                     position, is_deleted, created_at)
                VALUES (?,?,?,?,?,?,?,0,?)
                """,
                (
                    row["problem_id"],
                    subpattern_id,
                    row["title"],
                    row.get("url") or "",
                    row.get("platform") or "Other",
                    row.get("platform_id") or "",
                    position,
                    created_at,
                ),
            )
            inserted.append((row["problem_id"], position))
    return inserted


def set_deleted(kind: str, entity_id: str, deleted: bool) -> int:
    table, key, _ = table_for(kind)
    return _exec(
        f"UPDATE {table} SET is_deleted = ? WHERE {key} = ?",
        (1 if deleted else 0, entity_id),
    )


def rename_entity(kind: str, entity_id: str, title: str) -> int:
    table, key, _ = table_for(kind)
    return _exec(f"UPDATE {table} SET title = ? WHERE {key} = ?", (title, entity_id))


def update_sheet_description(sheet_id: str, description: str) -> int:
    return _exec("UPDATE sheets SET description = ? WHERE sheet_id = ?", (description, sheet_id))


def restore_entity(kind: str, entity_id: str) -> Optional[int]:
    """Clear the deleted flag, moving the row to the end if a live sibling took its position.

    Returns the new position when the row was moved, otherwise ``None``.
    """
    table, key, parent_col = table_for(kind)
    with transaction() as con:
        row = get_entity(kind, entity_id, con=con)
        if row is None:
            return None
        moved_to: Optional[int] = None
        if parent_col is not None:
            clash = con.execute(
                f"""
                SELECT 1 FROM {table}
                WHERE {parent_col} = ? AND is_deleted = 0 AND position = ? AND {key} != ?
                LIMIT 1
                """,
                (row[parent_col], row["position"], entity_id),
            ).fetchone()
            if clash is not None:
                moved_to = next_position(PARENT_KIND[kind], row[parent_col], con=con)
                con.execute(f"UPDATE {table} SET position = ? WHERE {key} = ?", (moved_to, entity_id))
        con.execute(f"UPDATE {table} SET is_deleted = 0 WHERE {key} = ?", (entity_id,))
    return moved_to


def assign_positions(
    kind: str,
    assignments: Sequence[Tuple[str, int]],
    con: Optional[sqlite3.Connection] = None,
) -> None:
    """Apply ``(key, position)`` pairs; all updates commit together or not at all.

    With ``con`` the updates join the caller's open transaction.
    """
    if con is None:
        with transaction() as own:
            assign_positions(kind, assignments, con=own)
        return
    table, key, _ = table_for(kind)
    for entity_id, position in assignments:
        cur = con.execute(
            f"UPDATE {table} SET position = ? WHERE {key} = ?", (int(position), entity_id)
        )
        if cur.rowcount != 1:
            raise sqlite3.IntegrityError(f"{kind} {entity_id} vanished during reorder")


# -------------- user profiles --------------
def _decode_profile(row: sqlite3.Row) -> Dict[str, Any]:
    data = dict(row)
    data["uid"] = data.pop("user_id")
    raw = data.get("completed_problems") or "{}"
    try:
        completed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Discarding unreadable completion map for %s", data["uid"])
        completed = {}
    # Entries are removed on unsolve; tolerate legacy null values by dropping them.
    data["completed_problems"] = {k: v for k, v in (completed or {}).items() if v is not None}
    return data


def load_profile(user_id: str, con: Optional[sqlite3.Connection] = None) -> Optional[Dict[str, Any]]:
    rows = _query(
        f"SELECT {_PROFILE_COLUMNS} FROM user_profiles WHERE user_id = ?",
        (user_id,),
        con=con,
    )
    return _decode_profile(rows[0]) if rows else None


def store_profile(profile: Mapping[str, Any], con: Optional[sqlite3.Connection] = None) -> None:
    """Upsert a whole profile record (JSON-mode dump of ``schemas.UserProfile``)."""
    params = (
        profile["uid"],
        profile.get("email"),
        profile.get("display_name"),
        profile.get("role") or "user",
        _normalize_ts(profile["created_at"]),
        _normalize_ts(profile["last_active"]),
        json_dumps(profile.get("completed_problems") or {}),
        _normalize_ts(profile.get("streak_start")),
        int(profile.get("current_streak") or 0),
        int(profile.get("max_streak") or 0),
        profile.get("last_solved_date"),
    )
    sql = f"""
        INSERT INTO user_profiles({_PROFILE_COLUMNS})
        VALUES (?,?,?,?,?,?,?,?,?,?,?)
        ON CONFLICT(user_id) DO UPDATE SET
          email=excluded.email,
          display_name=excluded.display_name,
          role=excluded.role,
          last_active=excluded.last_active,
          completed_problems=excluded.completed_problems,
          streak_start=excluded.streak_start,
          current_streak=excluded.current_streak,
          max_streak=excluded.max_streak,
          last_solved_date=excluded.last_solved_date
    """
    if con is not None:
        con.execute(sql, params)
        return
    _exec(sql, params)


def touch_last_active(user_id: str, when: Optional[datetime] = None) -> int:
    return _exec(
        "UPDATE user_profiles SET last_active = ? WHERE user_id = ?",
        (_utc_iso(when), user_id),
    )


def set_display_name(user_id: str, display_name: str) -> int:
    return _exec(
        "UPDATE user_profiles SET display_name = ? WHERE user_id = ?",
        (display_name, user_id),
    )


def list_profiles(limit: int = 500) -> list[Dict[str, Any]]:
    rows = _query(
        f"SELECT {_PROFILE_COLUMNS} FROM user_profiles ORDER BY last_active DESC LIMIT ?",
        (int(limit),),
    )
    return [_decode_profile(row) for row in rows]


# -------------- notes --------------
def save_note(user_id: str, problem_id: str, content: str, updated_at: Optional[datetime] = None) -> str:
    stamp = _utc_iso(updated_at)
    _exec(
        """
        INSERT INTO notes(user_id, problem_id, content, updated_at)
        VALUES (?,?,?,?)
        ON CONFLICT(user_id, problem_id) DO UPDATE SET
          content=excluded.content,
          updated_at=excluded.updated_at
        """,
        (user_id, problem_id, content, stamp),
    )
    return stamp


def get_note(user_id: str, problem_id: str) -> Optional[sqlite3.Row]:
    rows = _query(
        "SELECT user_id, problem_id, content, updated_at FROM notes WHERE user_id = ? AND problem_id = ?",
        (user_id, problem_id),
    )
    return rows[0] if rows else None


def get_notes(user_id: str, problem_ids: Optional[Iterable[str]] = None) -> Dict[str, str]:
    """Map problem id -> note content for ``user_id``, optionally restricted to ``problem_ids``."""
    rows = _query(
        "SELECT problem_id, content FROM notes WHERE user_id = ?",
        (user_id,),
    )
    wanted = set(problem_ids) if problem_ids is not None else None
    return {
        row["problem_id"]: row["content"]
        for row in rows
        if wanted is None or row["problem_id"] in wanted
    }
