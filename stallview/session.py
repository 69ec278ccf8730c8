import asyncio
import logging
import secrets
import time

from . import modes
from .assets import resolve_image
from .auth import Identity
from .catalog import Comic
from .config import ViewerSettings
from .favorites import FavoriteSynchronizer
from .modes import ModePolicy
from .navigator import FrameNavigator
from .scheduler import AutoAdvanceScheduler

logger = logging.getLogger(__name__)


class ViewerSession:
    """
    One open comic view: mode policy, frame position, auto-advance timer and
    favorite flag. Owns all of them; close() stops the timer and discards the
    favorite synchronizer. Use `async with` to close on every exit path.
    """

    def __init__(
        self,
        comic: Comic,
        policy: ModePolicy,
        identity: Identity | None,
        store,
        settings: ViewerSettings | None = None,
    ) -> None:
        self._store = store
        self._settings = settings or ViewerSettings()
        self._policy = policy
        self._identity = identity
        self._closed = False
        self._bind_comic(comic)
        self._favorites = self._new_favorites()
        self.last_used = time.monotonic()

    @classmethod
    async def open(
        cls,
        comic: Comic,
        mode_id: str | None,
        identity: Identity | None,
        store,
        settings: ViewerSettings | None = None,
    ) -> "ViewerSession":
        session = cls(comic, modes.resolve(mode_id), identity, store, settings)
        try:
            if session._policy.auto_advance_enabled:
                session._scheduler.set_playing(True)
            await session._favorites.initialize()
        except BaseException:
            session.close()
            raise
        logger.info("Opened viewer for comic=%s mode=%s", comic.id, session._policy.mode_id)
        return session

    async def __aenter__(self) -> "ViewerSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def comic(self) -> Comic:
        return self._comic

    @property
    def policy(self) -> ModePolicy:
        return self._policy

    @property
    def identity(self) -> Identity | None:
        return self._identity

    @property
    def navigator(self) -> FrameNavigator:
        return self._navigator

    @property
    def scheduler(self) -> AutoAdvanceScheduler:
        return self._scheduler

    @property
    def favorites(self) -> FavoriteSynchronizer:
        return self._favorites

    @property
    def current(self) -> int:
        return self._navigator.current

    @property
    def playing(self) -> bool:
        return self._scheduler.playing

    @property
    def closed(self) -> bool:
        return self._closed

    def touch(self) -> None:
        self.last_used = time.monotonic()

    def _bind_comic(self, comic: Comic, navigator: FrameNavigator | None = None) -> None:
        navigator = navigator or FrameNavigator(comic.frame_count)
        self._comic = comic
        self._image_url = resolve_image(comic.image_url)
        self._navigator = navigator
        self._scheduler = self._new_scheduler()

    def _new_scheduler(self) -> AutoAdvanceScheduler:
        return AutoAdvanceScheduler(
            self._navigator, self._policy, self._settings.autoplay_interval_s
        )

    def _new_favorites(self) -> FavoriteSynchronizer:
        return FavoriteSynchronizer(
            self._store, self._identity, self._comic.id, self._settings.store_timeout_s
        )

    def _restart_playback(self) -> None:
        self._scheduler.stop()
        self._navigator.reset()
        self._scheduler = self._new_scheduler()
        if self._policy.auto_advance_enabled:
            self._scheduler.set_playing(True)

    def change_mode(self, mode_id: str | None) -> ModePolicy:
        """Switch mode; the frame always restarts at 1 and auto-play modes start playing."""
        if self._closed:
            return self._policy
        self._policy = modes.resolve(mode_id)
        self._restart_playback()
        return self._policy

    async def change_comic(self, comic: Comic) -> None:
        if self._closed:
            return
        # Raises on a bad frame count before anything is torn down.
        navigator = FrameNavigator(comic.frame_count)
        self._scheduler.stop()
        self._bind_comic(comic, navigator)
        if self._policy.auto_advance_enabled:
            self._scheduler.set_playing(True)
        await self._rebuild_favorites()

    async def change_identity(self, identity: Identity | None) -> None:
        if self._closed or identity == self._identity:
            return
        self._identity = identity
        await self._rebuild_favorites()

    async def _rebuild_favorites(self) -> None:
        self._favorites.close()
        self._favorites = self._new_favorites()
        await self._favorites.initialize()

    def next(self) -> int:
        if not self._closed and self._policy.allows_manual_navigation:
            self._navigator.next(wrap=False)
        return self._navigator.current

    def previous(self) -> int:
        if not self._closed and self._policy.allows_manual_navigation:
            self._navigator.previous()
        return self._navigator.current

    def play(self) -> bool:
        if not self._closed and self._policy.auto_advance_enabled:
            self._scheduler.set_playing(True)
        return self._scheduler.playing

    def pause(self) -> bool:
        if self._policy.auto_advance_enabled:
            self._scheduler.set_playing(False)
        return self._scheduler.playing

    async def retry_favorite(self) -> bool:
        if self._closed:
            return False
        return await self._favorites.initialize()

    async def toggle_favorite(self):
        if self._closed:
            return None
        return await self._favorites.toggle()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._scheduler.stop()
        self._favorites.close()
        logger.info("Closed viewer for comic=%s", self._comic.id)

    def snapshot(self) -> dict:
        favorites = self._favorites
        return {
            "comic": {
                "id": self._comic.id,
                "title": self._comic.title,
                "tags": list(self._comic.tags),
                "image_url": self._image_url,
            },
            "mode": self._policy.mode_id,
            "label": self._policy.label,
            "navigation": self._policy.navigation,
            "allows_manual_navigation": self._policy.allows_manual_navigation,
            "auto_advance_enabled": self._policy.auto_advance_enabled,
            "frame": self._navigator.current,
            "frame_count": self._navigator.frame_count,
            "at_start": self._navigator.at_start,
            "at_end": self._navigator.at_end,
            "playing": self._scheduler.playing,
            "signed_in": self._identity is not None,
            "favorite": {
                "state": favorites.state.value,
                "is_favorite": favorites.is_favorite,
                "in_flight": favorites.in_flight,
                "error": favorites.error,
            },
            "closed": self._closed,
        }


class SessionRegistry:
    """Open viewer sessions of this process, keyed by an opaque token."""

    def __init__(self, idle_s: float) -> None:
        self._idle_s = idle_s
        self._sessions: dict[str, ViewerSession] = {}
        self._pruner: asyncio.Task | None = None

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, token: str) -> bool:
        return token in self._sessions

    def add(self, session: ViewerSession) -> str:
        self.prune()
        token = secrets.token_urlsafe(16)
        self._sessions[token] = session
        return token

    def get(self, token: str) -> ViewerSession | None:
        self.prune()
        session = self._sessions.get(token)
        if session is not None:
            session.touch()
        return session

    def close(self, token: str) -> bool:
        session = self._sessions.pop(token, None)
        if session is None:
            return False
        session.close()
        return True

    def close_all(self) -> None:
        for token in list(self._sessions):
            self.close(token)

    def prune(self, now: float | None = None) -> int:
        """Close sessions idle for longer than the limit; returns how many were closed."""
        now = time.monotonic() if now is None else now
        stale = [
            token
            for token, session in self._sessions.items()
            if session.closed or now - session.last_used > self._idle_s
        ]
        for token in stale:
            self.close(token)
        if stale:
            logger.info("Closed %s idle viewer sessions", len(stale))
        return len(stale)

    def start_pruning(self, interval_s: float) -> bool:
        """Prune every `interval_s` seconds until stop_pruning(). Must be called from a running loop."""
        if interval_s <= 0:
            raise ValueError("interval_s must be positive")
        if self._pruner is not None:
            return False
        loop = asyncio.get_running_loop()
        self._pruner = loop.create_task(self._prune_loop(interval_s), name="viewer-session-pruner")
        return True

    def stop_pruning(self) -> None:
        pruner, self._pruner = self._pruner, None
        if pruner is not None and not pruner.done():
            pruner.cancel()

    async def _prune_loop(self, interval_s: float) -> None:
        while True:
            await asyncio.sleep(interval_s)
            try:
                self.prune()
            except Exception:
                logger.exception("Viewer session pruning failed")
