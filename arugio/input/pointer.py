"""Pointer input. Converts PyGame mouse drags into a target velocity.

While the left button is held, the offset from the screen centre to the
pointer steers the local ball: direction is the offset's direction, speed
grows from 0 at the deadzone edge toward 1 far from the centre. Releasing
the button stops the ball's thrust.
"""

from __future__ import annotations

import pygame
from pygame.math import Vector2

from arugio.config import POINTER_DEADZONE


def pointer_target_velocity(offset: Vector2, deadzone: float = POINTER_DEADZONE) -> Vector2:
    """Map a centre-to-pointer offset to a target velocity of length [0, 1)."""
    length = offset.length()
    if length == 0:
        return Vector2()
    power = 1.0 - min(1.0, deadzone / length)
    return offset.normalize() * power


class PointerInput:
    """Tracks the left button and turns drag events into target velocities."""

    def __init__(self, screen_size: tuple[int, int], deadzone: float = POINTER_DEADZONE) -> None:
        self._center = Vector2(screen_size[0] / 2, screen_size[1] / 2)
        self._deadzone = deadzone
        self._pressed = False

    @property
    def pressed(self) -> bool:
        return self._pressed

    def resize(self, screen_size: tuple[int, int]) -> None:
        self._center = Vector2(screen_size[0] / 2, screen_size[1] / 2)

    def offset(self, pos: tuple[int, int]) -> Vector2:
        """Screen position -> world-oriented offset from the centre (y up)."""
        return Vector2(pos[0] - self._center.x, self._center.y - pos[1])

    def process_events(self, events: list[pygame.event.Event]) -> Vector2 | None:
        """Return the latest target velocity produced by events, or None."""
        target: Vector2 | None = None
        for event in events:
            if event.type == pygame.MOUSEBUTTONDOWN and event.button == 1:
                self._pressed = True
                target = pointer_target_velocity(self.offset(event.pos), self._deadzone)
            elif event.type == pygame.MOUSEMOTION and self._pressed:
                target = pointer_target_velocity(self.offset(event.pos), self._deadzone)
            elif event.type == pygame.MOUSEBUTTONUP and event.button == 1:
                self._pressed = False
                target = Vector2()
        return target
