import asyncio
import logging

from .config import DEFAULT_AUTOPLAY_INTERVAL_MS
from .modes import ModePolicy
from .navigator import FrameNavigator

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_S = DEFAULT_AUTOPLAY_INTERVAL_MS / 1000.0


class AutoAdvanceScheduler:
    """
    Periodically advances a FrameNavigator while playing.

    Every start() opens a new generation; a tick only advances when its
    generation is still current, so a tick that wakes up after stop()
    changes nothing.
    """

    def __init__(
        self,
        navigator: FrameNavigator,
        policy: ModePolicy,
        interval_s: float = DEFAULT_INTERVAL_S,
    ) -> None:
        if interval_s <= 0:
            raise ValueError("interval_s must be positive")
        self._navigator = navigator
        self._policy = policy
        self._interval_s = interval_s
        self._generation = 0
        self._task: asyncio.Task | None = None

    @property
    def playing(self) -> bool:
        return self._task is not None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def interval_s(self) -> float:
        return self._interval_s

    def start(self) -> bool:
        """Returns True if a new timer was started. Must be called from a running loop."""
        if not self._policy.auto_advance_enabled:
            return False
        if self._task is not None:
            return False
        self._generation += 1
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(
            self._run(self._generation), name=f"auto-advance-{self._generation}"
        )
        return True

    def stop(self) -> None:
        self._generation += 1
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

    def set_playing(self, playing: bool) -> bool:
        if playing:
            self.start()
        else:
            self.stop()
        return self.playing

    async def _run(self, generation: int) -> None:
        while True:
            await asyncio.sleep(self._interval_s)
            if not self.tick(generation):
                return

    def tick(self, generation: int) -> bool:
        """Advance one frame if `generation` is still live; returns whether the timer should keep going."""
        if generation != self._generation or self._task is None:
            return False
        try:
            self._navigator.next(wrap=self._policy.wrap_on_advance)
        except Exception:
            logger.exception("Auto-advance tick failed; stopping playback")
            self.stop()
            return False
        return True
