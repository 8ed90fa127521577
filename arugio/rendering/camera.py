"""Camera for Arugio.

Follows the local ball, leading it by its velocity so the view opens up
in the direction of travel. World y points up; screen y points down.
The camera is local-only and never synced over the network.
"""

from __future__ import annotations

from pygame.math import Vector2

from arugio.config import CAMERA_VELOCITY_LEAD, PIXELS_PER_UNIT, SCREEN_HEIGHT, SCREEN_WIDTH
from arugio.simulation.state import Ball


class Camera:
    """Viewport into the game world."""

    def __init__(
        self,
        width: int = SCREEN_WIDTH,
        height: int = SCREEN_HEIGHT,
        pixels_per_unit: float = PIXELS_PER_UNIT,
    ) -> None:
        self.width = width
        self.height = height
        self.pixels_per_unit = pixels_per_unit
        self.center = Vector2()  # world point at the middle of the screen

    def follow(self, ball: Ball) -> None:
        """Center on a ball, leading it by its velocity."""
        self.center = ball.position + ball.velocity * CAMERA_VELOCITY_LEAD

    def world_to_screen(self, point: Vector2) -> tuple[int, int]:
        """Convert a world position to screen pixel coordinates."""
        sx = (point.x - self.center.x) * self.pixels_per_unit + self.width / 2
        sy = (self.center.y - point.y) * self.pixels_per_unit + self.height / 2
        return (round(sx), round(sy))

    def screen_to_world(self, screen_x: int, screen_y: int) -> Vector2:
        """Convert screen pixel coordinates to a world position."""
        return Vector2(
            self.center.x + (screen_x - self.width / 2) / self.pixels_per_unit,
            self.center.y - (screen_y - self.height / 2) / self.pixels_per_unit,
        )
