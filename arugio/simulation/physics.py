"""Physics integrator: target velocity -> velocity -> position.

Velocity decays exponentially toward the target velocity, which makes balls
feel inertial. Position is plain Euler integration. Both server and client
call integrate() once per tick for every ball they hold.
"""

from __future__ import annotations

from typing import Iterable

from pygame.math import Vector2

from arugio.config import POSITION_SCALE, VELOCITY_RATE
from arugio.simulation.state import Ball


def advance_velocity(
    velocity: Vector2,
    target_velocity: Vector2,
    dt: float,
    rate: float = VELOCITY_RATE,
) -> Vector2:
    """Return velocity moved toward target_velocity by a fraction dt*rate."""
    blend = dt * rate
    return velocity * (1.0 - blend) + target_velocity * blend


def advance_position(
    position: Vector2,
    velocity: Vector2,
    dt: float,
    scale: float = POSITION_SCALE,
) -> Vector2:
    """Return position after moving at velocity for dt seconds."""
    return position + velocity * (dt * scale)


def integrate(balls: Iterable[Ball], dt: float) -> None:
    """Advance every ball by one tick (mutates the balls)."""
    for ball in balls:
        ball.velocity = advance_velocity(ball.velocity, ball.target_velocity, dt)
        ball.position = advance_position(ball.position, ball.velocity, dt)
