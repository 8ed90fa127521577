"""Game renderer. Draws the world grid and the balls, plus a debug overlay.

Read-only consumer of the client's ball registry: it reads positions to
place each ball and the local player's velocity to frame the camera.
"""

from __future__ import annotations

import math

import pygame
from pygame.math import Vector2

from arugio.config import (
    BALL_RADIUS,
    COLOR_BALL,
    COLOR_BG,
    COLOR_DEBUG_TEXT,
    COLOR_GRID,
    COLOR_LOCAL_BALL,
    GRID_SPACING,
)
from arugio.rendering.camera import Camera
from arugio.simulation.state import BallRegistry


class Renderer:
    """Draws the client's view of the world to the screen."""

    def __init__(self, screen: pygame.Surface) -> None:
        self._screen = screen
        self._font = pygame.font.SysFont("monospace", 16)
        self.camera = Camera(screen.get_width(), screen.get_height())

    def resize(self) -> None:
        self.camera.width = self._screen.get_width()
        self.camera.height = self._screen.get_height()

    def draw(self, balls: BallRegistry, debug_info: dict[str, str]) -> None:
        """Draw one frame and flip the display."""
        local = balls.local_player()
        if local is not None:
            self.camera.follow(local)

        self._screen.fill(COLOR_BG)
        self._draw_grid()
        radius = max(2, round(BALL_RADIUS * self.camera.pixels_per_unit))
        for ball in balls:
            color = COLOR_LOCAL_BALL if ball.local_player else COLOR_BALL
            center = self.camera.world_to_screen(ball.position)
            pygame.draw.circle(self._screen, color, center, radius)
        self._draw_debug(debug_info)
        pygame.display.flip()

    def _draw_grid(self) -> None:
        cam = self.camera
        top_left = cam.screen_to_world(0, 0)
        bottom_right = cam.screen_to_world(cam.width, cam.height)

        x = math.floor(top_left.x / GRID_SPACING) * GRID_SPACING
        while x <= bottom_right.x:
            sx, _ = cam.world_to_screen(Vector2(x, 0))
            pygame.draw.line(self._screen, COLOR_GRID, (sx, 0), (sx, cam.height))
            x += GRID_SPACING

        y = math.floor(bottom_right.y / GRID_SPACING) * GRID_SPACING
        while y <= top_left.y:
            _, sy = cam.world_to_screen(Vector2(0, y))
            pygame.draw.line(self._screen, COLOR_GRID, (0, sy), (cam.width, sy))
            y += GRID_SPACING

    def _draw_debug(self, debug_info: dict[str, str]) -> None:
        y = 8
        for key, value in debug_info.items():
            text = self._font.render(f"{key}: {value}", True, COLOR_DEBUG_TEXT)
            self._screen.blit(text, (8, y))
            y += 18
