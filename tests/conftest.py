"""Shared test fixtures for Arugio."""

from __future__ import annotations

import random

import pytest

from arugio.networking.peer import LoopbackConnectionManager
from arugio.networking.protocol import NetworkEvent, NetworkEventType
from arugio.simulation.state import BallRegistry
from arugio.sync.server import SyncServer


@pytest.fixture
def registry() -> BallRegistry:
    """An empty ball registry."""
    return BallRegistry()


@pytest.fixture
def server_net() -> LoopbackConnectionManager:
    """The server side of an in-memory network."""
    return LoopbackConnectionManager()


@pytest.fixture
def server(server_net: LoopbackConnectionManager) -> SyncServer:
    """A server with a seeded RNG and the default unowned-ball floor."""
    return SyncServer(server_net, rng=random.Random(42))


@pytest.fixture
def remote() -> LoopbackConnectionManager:
    """A bare peer used to talk to a server or client under test by hand."""
    return LoopbackConnectionManager()


class GhostConnectionManager(LoopbackConnectionManager):
    """Reports a connection for a handle that has no live peer."""

    def drain_events(self) -> list[NetworkEvent]:
        return super().drain_events() + [NetworkEvent(NetworkEventType.CONNECTED, 99)]


@pytest.fixture
def ghost_net() -> GhostConnectionManager:
    """A network whose next poll announces a peer that does not exist."""
    return GhostConnectionManager()
