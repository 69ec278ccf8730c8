import asyncio
import logging
from enum import Enum

from .auth import Identity
from .config import DEFAULT_STORE_TIMEOUT_S

logger = logging.getLogger(__name__)


class FavoriteState(str, Enum):
    UNKNOWN = "unknown"
    ABSENT = "absent"
    PRESENT = "present"


class ToggleState(str, Enum):
    IDLE = "idle"
    INFLIGHT = "inflight"


class FavoriteSyncError(RuntimeError):
    """A favorite toggle failed and the local state was rolled back."""


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class FavoriteSynchronizer:
    """
    Favorite flag for one (identity, comic) pair, kept in step with the Content Store.

    Toggles are applied locally first and rolled back when the store call
    fails or times out. Only one toggle may be in flight; further toggles
    are ignored until it settles. After close() nothing that arrives from
    the store changes this instance.
    """

    def __init__(
        self,
        store,
        identity: Identity | None,
        comic_id: str,
        timeout_s: float = DEFAULT_STORE_TIMEOUT_S,
    ) -> None:
        self._store = store
        self._identity = identity
        self._comic_id = comic_id
        self._timeout_s = timeout_s
        self._state = FavoriteState.UNKNOWN
        self._toggle_state = ToggleState.IDLE
        self._version = 0
        self._error: str | None = None
        self._closed = False

    @property
    def identity(self) -> Identity | None:
        return self._identity

    @property
    def comic_id(self) -> str:
        return self._comic_id

    @property
    def state(self) -> FavoriteState:
        return self._state

    @property
    def in_flight(self) -> bool:
        return self._toggle_state is ToggleState.INFLIGHT

    @property
    def is_favorite(self) -> bool:
        return self._state is FavoriteState.PRESENT

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    async def initialize(self) -> bool:
        """Load membership from the store. Returns False (state stays unknown) on failure."""
        if self._identity is None or self._closed:
            return False
        version = self._version
        try:
            present = await asyncio.wait_for(
                self._store.is_favorite(self._identity.id, self._comic_id),
                self._timeout_s,
            )
        except Exception as exc:
            if self._closed:
                return False
            self._error = f"Could not load favorite: {_describe(exc)}"
            logger.warning(
                "Favorite lookup failed for user=%s comic=%s: %s",
                self._identity.id,
                self._comic_id,
                exc,
            )
            return False
        # A toggle that is pending or settled meanwhile has the newer answer.
        if self._closed or self.in_flight or version != self._version:
            return False
        self._state = FavoriteState.PRESENT if present else FavoriteState.ABSENT
        self._error = None
        return True

    async def toggle(self) -> FavoriteState | None:
        """
        Flip the favorite flag. Returns the confirmed state, or None when the
        toggle was ignored (signed out, closed, or another toggle in flight).
        Raises FavoriteSyncError after rolling back a failed toggle.
        """
        if self._identity is None or self._closed or self.in_flight:
            return None

        previous = self._state
        target = FavoriteState.ABSENT if previous is FavoriteState.PRESENT else FavoriteState.PRESENT
        self._toggle_state = ToggleState.INFLIGHT
        self._state = target
        self._version += 1

        if target is FavoriteState.PRESENT:
            send = self._store.add_favorite
        else:
            send = self._store.remove_favorite

        try:
            await asyncio.wait_for(send(self._identity.id, self._comic_id), self._timeout_s)
        except asyncio.CancelledError:
            if not self._closed:
                self._rollback(previous)
            raise
        except Exception as exc:
            if self._closed:
                return None
            self._rollback(previous)
            self._error = f"Could not update favorite: {_describe(exc)}"
            logger.warning(
                "Favorite toggle failed for user=%s comic=%s; rolled back to %s: %s",
                self._identity.id,
                self._comic_id,
                previous.value,
                exc,
            )
            raise FavoriteSyncError(self._error) from exc

        if self._closed:
            return None
        self._toggle_state = ToggleState.IDLE
        self._state = target
        self._version += 1
        self._error = None
        return self._state

    def _rollback(self, previous: FavoriteState) -> None:
        self._state = previous
        self._toggle_state = ToggleState.IDLE
        self._version += 1
