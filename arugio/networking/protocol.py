"""Network protocol definitions.

Defines packet types and the logical messages carried on each channel.
These types are the shared contract between server and client; the binary
layout lives in serialization.py.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum, auto

from pygame.math import Vector2

from arugio.simulation.state import Component


class PacketType(IntEnum):
    """Transport-level packet types."""
    CONNECT = 1       # Client -> Server: request to join (carries protocol version)
    CONNECT_ACK = 2   # Server -> Client: accepted
    MESSAGE = 3       # A channel message (reliable or unreliable)
    ACK = 4           # Acknowledges one reliable message
    HEARTBEAT = 5     # Keepalive while otherwise idle
    DISCONNECT = 6    # Clean shutdown


class ClientMessageKind(IntEnum):
    HELLO = 1


class ServerMessageKind(IntEnum):
    WELCOME = 1


@dataclass(frozen=True, slots=True)
class ClientHello:
    """Sent by the client once connected. No payload."""


@dataclass(frozen=True, slots=True)
class ServerWelcome:
    """Tells a client which ball it controls."""
    ball_id: int


@dataclass(frozen=True, slots=True)
class ComponentUpdate:
    """One replicated component value of one ball."""
    ball_id: int
    component: Component
    x: float
    y: float

    @classmethod
    def of(cls, ball_id: int, component: Component, value: Vector2) -> ComponentUpdate:
        return cls(ball_id, component, value.x, value.y)

    @property
    def value(self) -> Vector2:
        return Vector2(self.x, self.y)


class NetworkEventType(Enum):
    """Connection lifecycle event kinds."""
    CONNECTED = auto()
    DISCONNECTED = auto()


@dataclass(frozen=True, slots=True)
class NetworkEvent:
    """A peer connected or disconnected."""
    kind: NetworkEventType
    handle: int
