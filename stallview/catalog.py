import json
import logging
import uuid
from dataclasses import dataclass, field

from .db import db

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Comic:
    id: str
    title: str
    image_url: str
    frame_count: int
    tags: tuple[str, ...] = field(default_factory=tuple)
    creator_id: str | None = None
    created_at: str | None = None


def _row_to_comic(r) -> Comic:
    try:
        tags = json.loads(r["tags"] or "[]")
    except json.JSONDecodeError:
        logger.warning("Comic %s has malformed tags; ignoring them", r["id"])
        tags = []
    return Comic(
        r["id"],
        r["title"],
        r["image_url"],
        int(r["frame_count"]),
        tuple(str(t) for t in tags if isinstance(t, str)),
        r["creator_id"],
        r["created_at"],
    )


def _clean_entry(entry) -> tuple | None:
    """Validate one catalog record; returns the column tuple or None when it must be skipped."""
    if not isinstance(entry, dict):
        logger.warning("Skipping catalog entry that is not an object: %r", entry)
        return None
    title = str(entry.get("title") or "").strip()
    if not title:
        logger.warning("Skipping catalog entry without a title: %r", entry)
        return None
    frame_count = entry.get("frame_count", 1)
    if isinstance(frame_count, bool) or not isinstance(frame_count, int) or frame_count < 1:
        logger.warning("Skipping catalog entry %r: frame_count must be a positive integer", title)
        return None
    tags = entry.get("tags") or []
    if not isinstance(tags, list):
        tags = []
    comic_id = str(entry.get("id") or uuid.uuid5(uuid.NAMESPACE_URL, title).hex)
    return (
        comic_id,
        title,
        str(entry.get("image_url") or ""),
        entry.get("creator_id"),
        frame_count,
        json.dumps([str(t) for t in tags]),
        entry.get("created_at"),
    )


def sync_catalog(entries: list) -> int:
    """
    Sync catalog records -> DB.
    Comics missing from the catalog are deleted (their favorites cascade).
    Returns the number of comics kept.
    """
    rows = [r for r in (_clean_entry(e) for e in entries) if r is not None]
    desired_ids = [r[0] for r in rows]

    with db() as conn:
        if desired_ids:
            placeholders = ",".join(["?"] * len(desired_ids))
            conn.execute(
                f"DELETE FROM comic WHERE id NOT IN ({placeholders})",
                (*desired_ids,),
            )
        else:
            conn.execute("DELETE FROM comic")

        for comic_id, title, image_url, creator_id, frame_count, tags, created_at in rows:
            conn.execute(
                """
                INSERT INTO comic(id, title, image_url, creator_id, frame_count, tags, created_at)
                VALUES (?, ?, ?, ?, ?, ?, COALESCE(?, datetime('now')))
                ON CONFLICT(id)
                DO UPDATE SET
                  title=excluded.title,
                  image_url=excluded.image_url,
                  creator_id=excluded.creator_id,
                  frame_count=excluded.frame_count,
                  tags=excluded.tags
                """,
                (comic_id, title, image_url, creator_id, frame_count, tags, created_at),
            )
    return len(rows)


def get_comics(search: str | None = None) -> list[Comic]:
    """Newest first; `search` matches a title substring or an exact tag."""
    term = (search or "").strip()
    with db() as conn:
        if term:
            rows = conn.execute(
                """
                SELECT id, title, image_url, creator_id, frame_count, tags, created_at
                FROM comic
                WHERE title LIKE ? ESCAPE '\\'
                   OR EXISTS (SELECT 1 FROM json_each(comic.tags) WHERE json_each.value = ?)
                ORDER BY created_at DESC, title COLLATE NOCASE
                """,
                (f"%{_escape_like(term)}%", term),
            ).fetchall()
        else:
            rows = conn.execute(
                """
                SELECT id, title, image_url, creator_id, frame_count, tags, created_at
                FROM comic
                ORDER BY created_at DESC, title COLLATE NOCASE
                """
            ).fetchall()
        return [_row_to_comic(r) for r in rows]


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def get_comic(comic_id: str) -> Comic | None:
    with db() as conn:
        r = conn.execute(
            """
            SELECT id, title, image_url, creator_id, frame_count, tags, created_at
            FROM comic
            WHERE id=?
            """,
            (comic_id,),
        ).fetchone()
        if not r:
            return None
        return _row_to_comic(r)


def get_favorite_comics(user_id: int) -> list[Comic]:
    with db() as conn:
        rows = conn.execute(
            """
            SELECT c.id, c.title, c.image_url, c.creator_id, c.frame_count, c.tags, c.created_at
            FROM favorite f
            JOIN comic c ON c.id = f.comic_id
            WHERE f.user_id=?
            ORDER BY f.created_at DESC, c.title COLLATE NOCASE
            """,
            (user_id,),
        ).fetchall()
        return [_row_to_comic(r) for r in rows]
