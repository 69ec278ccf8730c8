import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path

DB_PATH = Path(os.environ.get("STALLVIEW_DATA_DIR", "data")) / "app.db"


def ensure_db_dir() -> None:
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)


def get_conn() -> sqlite3.Connection:
    ensure_db_dir()
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


@contextmanager
def db() -> sqlite3.Connection:
    conn = get_conn()
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


def init_db() -> None:
    with db() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS comic (
              id TEXT PRIMARY KEY,
              title TEXT NOT NULL,
              image_url TEXT NOT NULL DEFAULT '',
              creator_id TEXT,
              frame_count INTEGER NOT NULL DEFAULT 1 CHECK (frame_count >= 1),
              tags TEXT NOT NULL DEFAULT '[]',
              created_at TEXT NOT NULL DEFAULT (datetime('now'))
            );

            CREATE TABLE IF NOT EXISTS users (
              id INTEGER PRIMARY KEY,
              email TEXT NOT NULL UNIQUE COLLATE NOCASE,
              password_hash TEXT NOT NULL,
              role TEXT NOT NULL DEFAULT 'user' CHECK (role IN ('user', 'admin')),
              created_at TEXT NOT NULL DEFAULT (datetime('now'))
            );

            CREATE TABLE IF NOT EXISTS sessions (
              id INTEGER PRIMARY KEY,
              user_id INTEGER NOT NULL,
              token TEXT NOT NULL UNIQUE,
              created_at TEXT NOT NULL DEFAULT (datetime('now')),
              last_seen TEXT NOT NULL DEFAULT (datetime('now')),
              FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS favorite (
              user_id INTEGER NOT NULL,
              comic_id TEXT NOT NULL,
              created_at TEXT NOT NULL DEFAULT (datetime('now')),
              PRIMARY KEY (user_id, comic_id),
              FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
              FOREIGN KEY (comic_id) REFERENCES comic(id) ON DELETE CASCADE
            );
            """
        )


def has_favorite(user_id: int, comic_id: str) -> bool:
    with db() as conn:
        row = conn.execute(
            "SELECT 1 FROM favorite WHERE user_id=? AND comic_id=?",
            (user_id, comic_id),
        ).fetchone()
        return row is not None


def add_favorite(user_id: int, comic_id: str) -> None:
    # Adding an existing row is a no-op.
    with db() as conn:
        conn.execute(
            """
            INSERT INTO favorite(user_id, comic_id, created_at)
            VALUES (?, ?, datetime('now'))
            ON CONFLICT(user_id, comic_id) DO NOTHING
            """,
            (user_id, comic_id),
        )


def favorite_ids(user_id: int) -> set[str]:
    with db() as conn:
        rows = conn.execute(
            "SELECT comic_id FROM favorite WHERE user_id=?",
            (user_id,),
        ).fetchall()
        return {r["comic_id"] for r in rows}


def remove_favorite(user_id: int, comic_id: str) -> None:
    with db() as conn:
        conn.execute(
            "DELETE FROM favorite WHERE user_id=? AND comic_id=?",
            (user_id, comic_id),
        )
