"""Client application loop.

Runs at the display frame rate: pump PyGame events, turn pointer drags
into the local player's target velocity, advance the client sync loop by
the frame time, then draw.
"""

from __future__ import annotations

import logging

import pygame

from arugio.config import FPS
from arugio.input.pointer import PointerInput
from arugio.rendering.renderer import Renderer
from arugio.sync.client import SyncClient
from arugio.sync.server import SyncServer

logger = logging.getLogger(__name__)


class Game:
    """Main client controller. Owns the sync client, input and rendering."""

    def __init__(
        self,
        screen: pygame.Surface,
        client: SyncClient,
        server: SyncServer | None = None,
    ) -> None:
        self._screen = screen
        self._client = client
        # In-process server for local play, ticked at the frame rate
        self._server = server
        self._clock = pygame.time.Clock()
        self._input = PointerInput(screen.get_size())
        self._renderer = Renderer(screen)

    def run(self) -> None:
        """Main loop. Returns when the window is closed."""
        running = True
        while running:
            dt = self._clock.tick(FPS) / 1000.0

            events = pygame.event.get()
            for event in events:
                if event.type == pygame.QUIT:
                    running = False
                elif event.type == pygame.KEYDOWN and event.key == pygame.K_ESCAPE:
                    running = False
                elif event.type == pygame.KEYDOWN and event.key == pygame.K_F11:
                    pygame.display.toggle_fullscreen()
                    self._input.resize(self._screen.get_size())
                    self._renderer.resize()

            if not running:
                logger.info("Window closed")
                break

            target = self._input.process_events(events)
            if target is not None:
                self._client.set_target_velocity(target)

            if self._server is not None:
                self._server.tick(dt)
            self._client.tick(dt)
            self._render()

    def _render(self) -> None:
        local = self._client.local_player
        debug_info = {
            "FPS": str(int(self._clock.get_fps())),
            "Connected": str(self._client.is_connected()),
            "Balls": str(len(self._client.balls)),
        }
        if local is not None:
            debug_info["Ball"] = str(local.ball_id)
            debug_info["Speed"] = f"{local.velocity.length():.2f}"
        else:
            debug_info["Status"] = "Waiting for server..."
        self._renderer.draw(self._client.balls, debug_info)
