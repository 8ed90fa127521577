"""Ball entities and the ball registry.

Each synchronization loop owns one BallRegistry. It is the only place balls
are looked up or created; there is no global entity table. Ball identities
are the join key across every network channel.

OWNERSHIP:
- Server side, network_handle names the peer that steers a ball. None means
  the server drives the ball itself (autonomous wander).
- Client side, local_player marks the single ball this client controls.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterator

from pygame.math import Vector2

from arugio.config import FIRST_BALL_ID, MAX_BALL_ID


class Component(IntEnum):
    """Replicated per-ball components."""
    POSITION = 0
    VELOCITY = 1
    TARGET_VELOCITY = 2


@dataclass(slots=True)
class Ball:
    """A circular entity on the 2D plane."""
    ball_id: int
    position: Vector2 = field(default_factory=Vector2)
    velocity: Vector2 = field(default_factory=Vector2)
    target_velocity: Vector2 = field(default_factory=Vector2)
    network_handle: int | None = None  # server only
    local_player: bool = False         # client only

    @property
    def is_owned(self) -> bool:
        return self.network_handle is not None

    def get_component(self, component: Component) -> Vector2:
        if component == Component.POSITION:
            return self.position
        if component == Component.VELOCITY:
            return self.velocity
        return self.target_velocity

    def set_component(self, component: Component, value: Vector2) -> None:
        """Overwrite a component with a copy of value."""
        value = Vector2(value)
        if component == Component.POSITION:
            self.position = value
        elif component == Component.VELOCITY:
            self.velocity = value
        else:
            self.target_velocity = value


class BallRegistry:
    """Mapping of ball identity to Ball, iterated in identity order.

    Identities handed out by spawn() are strictly increasing for the life of
    the registry: the next one is the highest identity ever registered + 1.
    """

    def __init__(self) -> None:
        self._balls: dict[int, Ball] = {}
        self._highest_id: int = FIRST_BALL_ID - 1

    def __iter__(self) -> Iterator[Ball]:
        for ball_id in sorted(self._balls):
            yield self._balls[ball_id]

    def __len__(self) -> int:
        return len(self._balls)

    def __contains__(self, ball_id: object) -> bool:
        return ball_id in self._balls

    @property
    def highest_id(self) -> int:
        return self._highest_id

    def get(self, ball_id: int) -> Ball | None:
        """Look up a ball by identity. Returns None if not found."""
        return self._balls.get(ball_id)

    def spawn(self, position: Vector2 | None = None) -> Ball:
        """Create a ball with a fresh identity."""
        ball_id = self._highest_id + 1
        if ball_id > MAX_BALL_ID:
            raise OverflowError("Ball identities exhausted")
        ball = Ball(ball_id)
        if position is not None:
            ball.position = Vector2(position)
        self._add(ball)
        return ball

    def insert(self, ball_id: int) -> Ball:
        """Create a ball with an identity assigned elsewhere (by the server).

        Raises ValueError if the identity is already present.
        """
        if ball_id in self._balls:
            raise ValueError(f"Ball {ball_id} already exists")
        ball = Ball(ball_id)
        self._add(ball)
        return ball

    def get_or_create(self, ball_id: int) -> tuple[Ball, bool]:
        """Return (ball, created)."""
        ball = self._balls.get(ball_id)
        if ball is not None:
            return ball, False
        return self.insert(ball_id), True

    def unowned(self) -> list[Ball]:
        """Balls with no controlling peer, in identity order."""
        return [b for b in self if b.network_handle is None]

    def owned_by(self, handle: int) -> list[Ball]:
        return [b for b in self if b.network_handle == handle]

    def local_player(self) -> Ball | None:
        """The ball this client controls, if it has been assigned one."""
        for ball in self._balls.values():
            if ball.local_player:
                return ball
        return None

    def _add(self, ball: Ball) -> None:
        self._balls[ball.ball_id] = ball
        self._highest_id = max(self._highest_id, ball.ball_id)
