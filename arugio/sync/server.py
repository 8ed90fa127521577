"""Authoritative server loop.

Each tick, in order:
    1. connection events: hand an unowned ball to each new peer and
       welcome it; free the ball of a peer that left
    2. spawn until MIN_UNOWNED_BALLS unowned balls exist
    3. unowned balls wander with random target velocities
    4. apply position / target velocity updates sent by peers
    5. integrate physics
    6. broadcast every position / target velocity that changed

Inbound updates are applied verbatim: the server does not check that the
sender owns the ball it is updating.
"""

from __future__ import annotations

import logging
import random
import time

from pygame.math import Vector2

from arugio.config import MIN_UNOWNED_BALLS, SERVER_TICK_RATE, SPAWN_EXTENT
from arugio.networking.channels import Channel, channel_for_component
from arugio.networking.peer import ConnectionManager, UnknownPeerError
from arugio.networking.protocol import (
    ComponentUpdate,
    NetworkEvent,
    NetworkEventType,
    ServerWelcome,
)
from arugio.simulation.physics import integrate
from arugio.simulation.state import Ball, BallRegistry, Component
from arugio.sync.changes import BROADCAST_COMPONENTS, ChangeTracker

logger = logging.getLogger(__name__)

# Components the server accepts from peers
ACCEPTED_COMPONENTS = (Component.POSITION, Component.TARGET_VELOCITY)

STATS_INTERVAL_TICKS = SERVER_TICK_RATE * 10


class CapacityError(RuntimeError):
    """A peer connected while no unowned ball was free to assign."""


class SyncServer:
    """Owns the canonical ball registry and drives it from the network."""

    def __init__(
        self,
        net: ConnectionManager,
        rng: random.Random | None = None,
        min_unowned: int = MIN_UNOWNED_BALLS,
        spawn_on_demand: bool = False,
    ) -> None:
        self._net = net
        self._rng = rng if rng is not None else random.Random()
        self._min_unowned = min_unowned
        self._spawn_on_demand = spawn_on_demand
        self._changes = ChangeTracker()
        self._running = False
        self.balls = BallRegistry()
        self.tick_count = 0
        self._maintain_spawn_floor()

    def tick(self, dt: float) -> None:
        """Advance the server by one tick of dt seconds."""
        self._net.poll()
        self._handle_network_events(self._net.drain_events())
        self._read_client_messages()
        self._maintain_spawn_floor()
        self._wander()
        self._apply_component_updates()
        integrate(self.balls, dt)
        self._broadcast_changes()
        self.tick_count += 1

        if self.tick_count % STATS_INTERVAL_TICKS == 0:
            logger.debug(
                "Tick %d: %d balls, %d peers",
                self.tick_count, len(self.balls), len(self._net.handles()),
            )

    def run(self, tick_rate: int = SERVER_TICK_RATE) -> None:
        """Tick at a fixed rate until stop() is called."""
        dt = 1.0 / tick_rate
        self._running = True
        logger.info("Server running at %d Hz", tick_rate)
        next_tick = time.monotonic()
        try:
            while self._running:
                self.tick(dt)
                next_tick += dt
                delay = next_tick - time.monotonic()
                if delay > 0:
                    time.sleep(delay)
                else:
                    # Fell behind; don't try to catch up in a burst
                    next_tick = time.monotonic()
        finally:
            self._net.close()

    def stop(self) -> None:
        self._running = False

    # --- Connections ---

    def _handle_network_events(self, events: list[NetworkEvent]) -> None:
        closed = {e.handle for e in events if e.kind == NetworkEventType.DISCONNECTED}
        live = set(self._net.handles())
        for event in events:
            if event.kind == NetworkEventType.CONNECTED:
                if event.handle in closed:
                    # Came and went within one poll
                    continue
                if event.handle not in live:
                    raise UnknownPeerError(event.handle)
                self._assign_ball(event.handle)
            elif event.kind == NetworkEventType.DISCONNECTED:
                for ball in self.balls.owned_by(event.handle):
                    ball.network_handle = None
                    logger.info("Peer %d left, ball %d is autonomous again",
                                event.handle, ball.ball_id)

    def _assign_ball(self, handle: int) -> Ball:
        unowned = self.balls.unowned()
        if unowned:
            ball = unowned[0]
        elif self._spawn_on_demand:
            ball = self._spawn()
        else:
            raise CapacityError(f"No unowned ball left for peer {handle}")
        ball.network_handle = handle
        self._net.send(handle, Channel.SERVER_MESSAGE, ServerWelcome(ball.ball_id))
        logger.info("Peer %d controls ball %d", handle, ball.ball_id)
        self._send_snapshot(handle)
        return ball

    def _send_snapshot(self, handle: int) -> None:
        """Bring a new peer up to date with everything broadcast before it joined.

        Change detection only re-sends values that move, so a ball at rest
        would otherwise never reach a late joiner. Values not broadcast yet
        go out with this tick's changes.
        """
        for ball in self.balls:
            for component in BROADCAST_COMPONENTS:
                if not self._changes.seen(ball.ball_id, component):
                    continue
                self._net.send(
                    handle,
                    channel_for_component(component),
                    ComponentUpdate.of(ball.ball_id, component, ball.get_component(component)),
                )

    def _read_client_messages(self) -> None:
        for handle in self._net.handles():
            for message in self._net.receive_all(handle, Channel.CLIENT_MESSAGE):
                logger.debug("Peer %d says %r", handle, message)

    # --- Simulation ---

    def _maintain_spawn_floor(self) -> None:
        missing = self._min_unowned - len(self.balls.unowned())
        for _ in range(missing):
            self._spawn()

    def _spawn(self) -> Ball:
        position = Vector2(
            self._rng.uniform(-SPAWN_EXTENT, SPAWN_EXTENT),
            self._rng.uniform(-SPAWN_EXTENT, SPAWN_EXTENT),
        )
        ball = self.balls.spawn(position)
        logger.info("Spawned ball %d", ball.ball_id)
        return ball

    def _wander(self) -> None:
        for ball in self.balls.unowned():
            ball.target_velocity = Vector2(
                self._rng.uniform(-1.0, 1.0),
                self._rng.uniform(-1.0, 1.0),
            )

    def _apply_component_updates(self) -> None:
        for handle in self._net.handles():
            for component in ACCEPTED_COMPONENTS:
                channel = channel_for_component(component)
                for update in self._net.receive_all(handle, channel):
                    ball = self.balls.get(update.ball_id)
                    if ball is None:
                        # Can race ahead of the ball's creation; not an error
                        continue
                    ball.set_component(component, update.value)
            ignored = self._net.receive_all(handle, Channel.VELOCITY)
            if ignored:
                logger.debug("Ignored %d velocity updates from peer %d", len(ignored), handle)

    def _broadcast_changes(self) -> None:
        for ball in self.balls:
            for component in BROADCAST_COMPONENTS:
                value = ball.get_component(component)
                if self._changes.changed(ball.ball_id, component, value):
                    self._net.broadcast(
                        channel_for_component(component),
                        ComponentUpdate.of(ball.ball_id, component, value),
                    )
