import asyncio
import logging
import sqlite3

from . import catalog, db
from .catalog import Comic

logger = logging.getLogger(__name__)


class ContentStoreError(RuntimeError):
    """A Content Store call failed; the caller may retry."""


class ContentStore:
    """
    Async access to comics and favorite rows.
    Each call runs the blocking sqlite work in a worker thread.
    """

    async def _call(self, what: str, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except sqlite3.Error as exc:
            logger.warning("Content store %s failed: %s", what, exc)
            raise ContentStoreError(f"{what} failed: {exc}") from exc

    async def list_comics(self, search: str | None = None) -> list[Comic]:
        return await self._call("list comics", catalog.get_comics, search)

    async def get_comic(self, comic_id: str) -> Comic | None:
        return await self._call("fetch comic", catalog.get_comic, comic_id)

    async def list_favorites(self, user_id: int) -> list[Comic]:
        return await self._call("list favorites", catalog.get_favorite_comics, user_id)

    async def is_favorite(self, user_id: int, comic_id: str) -> bool:
        return await self._call("fetch favorite", db.has_favorite, user_id, comic_id)

    async def favorite_ids(self, user_id: int) -> set[str]:
        return await self._call("list favorite ids", db.favorite_ids, user_id)

    async def add_favorite(self, user_id: int, comic_id: str) -> None:
        await self._call("add favorite", db.add_favorite, user_id, comic_id)

    async def remove_favorite(self, user_id: int, comic_id: str) -> None:
        await self._call("remove favorite", db.remove_favorite, user_id, comic_id)
