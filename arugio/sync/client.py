"""Client synchronization loop.

Mirrors the server's balls into a local registry, creating each ball the
first time its identity shows up. The ball named in the server's Welcome
becomes the local player: it takes local input, ignores inbound updates
(they are echoes of our own state) and is the only ball we broadcast.
Every ball is integrated locally so motion stays smooth between updates.
"""

from __future__ import annotations

import logging

from pygame.math import Vector2

from arugio.networking.channels import Channel, channel_for_component
from arugio.networking.peer import ConnectionManager, UnknownPeerError
from arugio.networking.protocol import (
    ClientHello,
    ComponentUpdate,
    NetworkEvent,
    NetworkEventType,
    ServerWelcome,
)
from arugio.simulation.physics import integrate
from arugio.simulation.state import Ball, BallRegistry, Component
from arugio.sync.changes import BROADCAST_COMPONENTS, ChangeTracker

logger = logging.getLogger(__name__)


class SyncClient:
    """Replicates server state and publishes the local player's state."""

    def __init__(self, net: ConnectionManager) -> None:
        self._net = net
        self._changes = ChangeTracker()
        self.balls = BallRegistry()

    @property
    def local_player(self) -> Ball | None:
        return self.balls.local_player()

    def is_connected(self) -> bool:
        return bool(self._net.handles())

    def set_target_velocity(self, value: Vector2) -> bool:
        """Steer the local player. Returns False if we have no ball yet."""
        ball = self.local_player
        if ball is None:
            return False
        ball.target_velocity = Vector2(value)
        return True

    def tick(self, dt: float) -> None:
        """Advance the client by one frame of dt seconds."""
        self._net.poll()
        self._handle_network_events(self._net.drain_events())
        self._read_server_messages()
        self._read_component_updates()
        integrate(self.balls, dt)
        self._broadcast_local_changes()

    def _handle_network_events(self, events: list[NetworkEvent]) -> None:
        closed = {e.handle for e in events if e.kind == NetworkEventType.DISCONNECTED}
        live = set(self._net.handles())
        for event in events:
            if event.kind == NetworkEventType.CONNECTED:
                if event.handle in closed:
                    continue
                if event.handle not in live:
                    raise UnknownPeerError(event.handle)
                logger.info("Connected to server (peer %d)", event.handle)
                self._net.send(event.handle, Channel.CLIENT_MESSAGE, ClientHello())
            elif event.kind == NetworkEventType.DISCONNECTED:
                logger.warning("Lost connection to server (peer %d)", event.handle)
                ball = self.local_player
                if ball is not None:
                    ball.local_player = False
                # Whatever we sent is gone with the connection
                self._changes = ChangeTracker()

    def _read_server_messages(self) -> None:
        for handle in self._net.handles():
            for message in self._net.receive_all(handle, Channel.SERVER_MESSAGE):
                if isinstance(message, ServerWelcome):
                    self._handle_welcome(message.ball_id)

    def _handle_welcome(self, ball_id: int) -> None:
        current = self.local_player
        if current is not None and current.ball_id != ball_id:
            logger.warning(
                "Server reassigned us from ball %d to ball %d",
                current.ball_id, ball_id,
            )
            current.local_player = False
        ball, _ = self.balls.get_or_create(ball_id)
        ball.local_player = True
        # The server may hold stale state for this ball, so publish it afresh
        self._changes = ChangeTracker()
        logger.info("Controlling ball %d", ball_id)

    def _read_component_updates(self) -> None:
        for handle in self._net.handles():
            for component in Component:
                channel = channel_for_component(component)
                for update in self._net.receive_all(handle, channel):
                    self._apply_update(update)

    def _apply_update(self, update: ComponentUpdate) -> None:
        ball, created = self.balls.get_or_create(update.ball_id)
        if ball.local_player:
            return
        if created:
            logger.debug("First sighting of ball %d", update.ball_id)
        ball.set_component(update.component, update.value)

    def _broadcast_local_changes(self) -> None:
        ball = self.local_player
        if ball is None:
            return
        for component in BROADCAST_COMPONENTS:
            value = ball.get_component(component)
            if self._changes.changed(ball.ball_id, component, value):
                self._net.broadcast(
                    channel_for_component(component),
                    ComponentUpdate.of(ball.ball_id, component, value),
                )
