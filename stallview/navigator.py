class FrameNavigator:
    """
    Current frame of one open comic, 1-based and always within [1, frame_count].
    """

    def __init__(self, frame_count: int) -> None:
        if isinstance(frame_count, bool) or not isinstance(frame_count, int) or frame_count < 1:
            raise ValueError(f"frame_count must be a positive integer, got {frame_count!r}")
        self._frame_count = frame_count
        self._current = 1

    @property
    def current(self) -> int:
        return self._current

    @property
    def frame_count(self) -> int:
        return self._frame_count

    @property
    def at_start(self) -> bool:
        return self._current == 1

    @property
    def at_end(self) -> bool:
        return self._current == self._frame_count

    def next(self, wrap: bool = False) -> int:
        """Step forward; at the last frame stay put, or go back to 1 when `wrap` is set."""
        if self._current < self._frame_count:
            self._current += 1
        elif wrap:
            self._current = 1
        return self._current

    def previous(self) -> int:
        if self._current > 1:
            self._current -= 1
        return self._current

    def reset(self) -> int:
        self._current = 1
        return self._current

    def __repr__(self) -> str:
        return f"FrameNavigator({self._current}/{self._frame_count})"
