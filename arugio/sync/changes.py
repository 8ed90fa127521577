"""Value-level change detection for outbound component broadcasts."""

from __future__ import annotations

import struct

from pygame.math import Vector2

from arugio.simulation.state import Component

# Components each side re-broadcasts when they change. Velocity is derived
# locally on every peer and is never sent.
BROADCAST_COMPONENTS = (Component.TARGET_VELOCITY, Component.POSITION)

# Same precision as the component wire body
WIRE_VECTOR = struct.Struct("!ff")


def wire_key(value: Vector2) -> bytes:
    """The value as it would look on the wire.

    Comparing bytes makes NaN equal to itself and hides drift below f32
    precision. Values too large for f32 fall back to their repr.
    """
    try:
        return WIRE_VECTOR.pack(value.x, value.y)
    except OverflowError:
        return f"{value.x!r},{value.y!r}".encode()


class ChangeTracker:
    """Remembers the last broadcast value of each (ball, component).

    Values are compared at wire precision, not by identity, so a ball that
    settles on a stable value stops generating traffic.
    """

    def __init__(self) -> None:
        self._last: dict[tuple[int, Component], bytes] = {}

    def seen(self, ball_id: int, component: Component) -> bool:
        """Whether a value for this (ball, component) was ever broadcast."""
        return (ball_id, component) in self._last

    def changed(self, ball_id: int, component: Component, value: Vector2) -> bool:
        """Record value and report whether it differs from the previous one."""
        key = (ball_id, component)
        current = wire_key(value)
        if self._last.get(key) == current:
            return False
        self._last[key] = current
        return True
