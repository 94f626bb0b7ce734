from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Rect:
    """Normalized viewport rectangle (0..1 in screen units)."""

    x: float
    y: float
    width: float
    height: float


FULL_VIEWPORT = Rect(0.0, 0.0, 1.0, 1.0)


def recompute_viewport(screen_width: int, screen_height: int, target_width: int, target_height: int) -> Rect:
    """
    Largest centered rectangle of the target aspect ratio that fits the screen.

    Letterboxes (bars top/bottom) when the screen is relatively taller than the
    target, pillarboxes otherwise.
    """
    screen_aspect = max(int(screen_width), 1) / max(int(screen_height), 1)
    target_aspect = max(int(target_width), 1) / max(int(target_height), 1)
    scale_height = screen_aspect / target_aspect
    if scale_height < 1.0:
        return Rect(0.0, (1.0 - scale_height) / 2.0, 1.0, scale_height)
    scale_width = 1.0 / scale_height
    return Rect((1.0 - scale_width) / 2.0, 0.0, scale_width, 1.0)


class ViewportTracker:
    """Caches the last screen size; recomputes the viewport only when it changes."""

    def __init__(self, target_width: int, target_height: int):
        self.target_width = int(target_width)
        self.target_height = int(target_height)
        self._screen: tuple[int, int] | None = None
        self._target: tuple[int, int] | None = None
        self.viewport = FULL_VIEWPORT

    def update(self, screen_width: int, screen_height: int) -> bool:
        """Returns True when the viewport was recomputed."""
        screen = (int(screen_width), int(screen_height))
        target = (self.target_width, self.target_height)
        if screen == self._screen and target == self._target:
            return False
        self._screen = screen
        self._target = target
        self.viewport = recompute_viewport(*screen, *target)
        return True
