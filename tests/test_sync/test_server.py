"""Tests for the authoritative server loop over loopback networking."""

import random

import pytest
from pygame.math import Vector2

from arugio.config import SPAWN_EXTENT
from arugio.networking.channels import Channel
from arugio.networking.peer import LoopbackConnectionManager, UnknownPeerError
from arugio.networking.protocol import ComponentUpdate, ServerWelcome
from arugio.simulation.state import Component
from arugio.sync.server import CapacityError, SyncServer

TICK = 1.0 / 30


def join(server_net: LoopbackConnectionManager, remote: LoopbackConnectionManager) -> int:
    """Link a peer to the server. Returns the handle the peer uses for the server."""
    return remote.link(server_net)


def solo_server(net: LoopbackConnectionManager) -> SyncServer:
    """A server with no autonomous balls, spawning one per joining peer."""
    return SyncServer(net, rng=random.Random(1), min_unowned=0, spawn_on_demand=True)


class TestSpawnFloor:
    def test_constructor_fills_floor(self, server):
        assert [b.ball_id for b in server.balls] == [1, 2, 3]
        assert all(not b.is_owned for b in server.balls)

    def test_spawn_positions_within_extent(self, server):
        for ball in server.balls:
            assert -SPAWN_EXTENT <= ball.position.x <= SPAWN_EXTENT
            assert -SPAWN_EXTENT <= ball.position.y <= SPAWN_EXTENT

    def test_floor_restored_after_assignment(self, server, server_net, remote):
        join(server_net, remote)
        server.tick(TICK)
        assert len(server.balls) == 4
        assert [b.ball_id for b in server.balls.unowned()] == [2, 3, 4]

    def test_floor_holds_every_tick(self, server, server_net):
        for _ in range(3):
            peer = LoopbackConnectionManager()
            join(server_net, peer)
            server.tick(TICK)
            assert len(server.balls.unowned()) >= 3

    def test_released_ball_not_despawned(self, server, server_net, remote):
        handle = join(server_net, remote)
        server.tick(TICK)
        remote.unlink(handle)
        server.tick(TICK)
        assert len(server.balls) == 4
        assert len(server.balls.unowned()) == 4


class TestConnections:
    def test_peer_gets_lowest_unowned_ball(self, server, server_net, remote):
        handle = join(server_net, remote)
        server.tick(TICK)
        assert remote.receive_all(handle, Channel.SERVER_MESSAGE) == [ServerWelcome(1)]
        assert server.balls.get(1).network_handle == server_net.handles()[0]

    def test_each_peer_gets_its_own_ball(self, server, server_net):
        peers = [LoopbackConnectionManager() for _ in range(2)]
        handles = [join(server_net, p) for p in peers]
        server.tick(TICK)
        welcomes = [p.receive_all(h, Channel.SERVER_MESSAGE) for p, h in zip(peers, handles)]
        assert welcomes == [[ServerWelcome(1)], [ServerWelcome(2)]]

    def test_disconnect_releases_ball(self, server, server_net, remote):
        handle = join(server_net, remote)
        server.tick(TICK)
        remote.unlink(handle)
        server.tick(TICK)
        assert not server.balls.get(1).is_owned

    def test_connect_and_disconnect_in_one_poll(self, server, server_net, remote):
        handle = join(server_net, remote)
        remote.unlink(handle)
        server.tick(TICK)
        assert all(not b.is_owned for b in server.balls)
        assert len(server.balls) == 3

    def test_capacity_exhausted(self, server_net, remote):
        server = SyncServer(server_net, rng=random.Random(1), min_unowned=0)
        join(server_net, remote)
        with pytest.raises(CapacityError):
            server.tick(TICK)

    def test_spawn_on_demand(self, server_net, remote):
        server = solo_server(server_net)
        assert len(server.balls) == 0
        handle = join(server_net, remote)
        server.tick(TICK)
        assert remote.receive_all(handle, Channel.SERVER_MESSAGE) == [ServerWelcome(1)]
        assert server.balls.get(1).is_owned


class TestWander:
    def test_unowned_targets_in_range(self, server):
        server.tick(TICK)
        for ball in server.balls:
            assert -1.0 <= ball.target_velocity.x <= 1.0
            assert -1.0 <= ball.target_velocity.y <= 1.0
            assert ball.target_velocity != Vector2(0, 0)

    def test_owned_ball_not_randomized(self, server, server_net, remote):
        join(server_net, remote)
        server.tick(TICK)
        owned = server.balls.get(1)
        owned.target_velocity = Vector2(0.25, 0.25)
        server.tick(TICK)
        assert owned.target_velocity == Vector2(0.25, 0.25)

    def test_deterministic_with_seed(self, server_net):
        a = SyncServer(server_net, rng=random.Random(7))
        b = SyncServer(LoopbackConnectionManager(), rng=random.Random(7))
        a.tick(TICK)
        b.tick(TICK)
        assert [x.position for x in a.balls] == [y.position for y in b.balls]


class TestInboundUpdates:
    def test_target_velocity_applied(self, server, server_net, remote):
        handle = join(server_net, remote)
        server.tick(TICK)
        remote.send(handle, Channel.TARGET_VELOCITY,
                    ComponentUpdate(1, Component.TARGET_VELOCITY, 0.5, 0.0))
        server.tick(TICK)
        assert server.balls.get(1).target_velocity == Vector2(0.5, 0.0)

    def test_position_applied(self, server, server_net, remote):
        handle = join(server_net, remote)
        server.tick(TICK)
        remote.send(handle, Channel.POSITION, ComponentUpdate(1, Component.POSITION, 3.0, 4.0))
        server.tick(0.0)
        assert server.balls.get(1).position == Vector2(3.0, 4.0)

    def test_unknown_ball_ignored(self, server, server_net, remote):
        handle = join(server_net, remote)
        server.tick(TICK)
        remote.send(handle, Channel.POSITION, ComponentUpdate(99, Component.POSITION, 1.0, 1.0))
        server.tick(TICK)
        assert 99 not in server.balls

    def test_velocity_updates_discarded(self, server, server_net, remote):
        handle = join(server_net, remote)
        server.tick(TICK)
        ball = server.balls.get(1)
        before = Vector2(ball.velocity)
        remote.send(handle, Channel.VELOCITY, ComponentUpdate(1, Component.VELOCITY, 9.0, 9.0))
        server.tick(0.0)
        assert ball.velocity == before
        assert server_net.receive_all(server_net.handles()[0], Channel.VELOCITY) == []

    def test_any_peer_may_update_any_ball(self, server, server_net, remote):
        handle = join(server_net, remote)
        server.tick(TICK)
        remote.send(handle, Channel.POSITION, ComponentUpdate(2, Component.POSITION, -3.0, 2.0))
        server.tick(0.0)
        assert server.balls.get(2).position == Vector2(-3.0, 2.0)


class TestBroadcast:
    def test_first_tick_broadcasts_every_ball(self, server, server_net, remote):
        handle = join(server_net, remote)
        server.tick(TICK)
        positions = remote.receive_all(handle, Channel.POSITION)
        targets = remote.receive_all(handle, Channel.TARGET_VELOCITY)
        assert sorted(u.ball_id for u in positions) == [1, 2, 3, 4]
        assert sorted(u.ball_id for u in targets) == [1, 2, 3, 4]
        assert remote.receive_all(handle, Channel.VELOCITY) == []

    def test_broadcast_matches_state(self, server, server_net, remote):
        handle = join(server_net, remote)
        server.tick(TICK)
        for update in remote.receive_all(handle, Channel.POSITION):
            ball = server.balls.get(update.ball_id)
            assert update.x == pytest.approx(ball.position.x, abs=1e-5)
            assert update.y == pytest.approx(ball.position.y, abs=1e-5)

    def test_unchanged_state_not_rebroadcast(self, server_net, remote):
        server = solo_server(server_net)
        handle = join(server_net, remote)
        server.tick(0.0)
        assert len(remote.receive_all(handle, Channel.POSITION)) == 1
        server.tick(0.0)
        assert remote.receive_all(handle, Channel.POSITION) == []
        assert remote.receive_all(handle, Channel.TARGET_VELOCITY) == []

    def test_identical_target_broadcast_once(self, server_net, remote):
        server = solo_server(server_net)
        handle = join(server_net, remote)
        server.tick(0.0)
        remote.receive_all(handle, Channel.TARGET_VELOCITY)
        for _ in range(3):
            remote.send(handle, Channel.TARGET_VELOCITY,
                        ComponentUpdate(1, Component.TARGET_VELOCITY, 0.5, 0.5))
            server.tick(0.0)
        targets = remote.receive_all(handle, Channel.TARGET_VELOCITY)
        assert targets == [ComponentUpdate(1, Component.TARGET_VELOCITY, 0.5, 0.5)]


class TestRunLoop:
    def test_tick_count(self, server):
        server.tick(TICK)
        server.tick(TICK)
        assert server.tick_count == 2

    def test_run_until_stopped(self, server, server_net, remote):
        join(server_net, remote)
        ticks = []
        original = server.tick

        def tick(dt):
            original(dt)
            ticks.append(dt)
            if len(ticks) == 3:
                server.stop()

        server.tick = tick
        server.run(tick_rate=100)
        assert ticks == [0.01, 0.01, 0.01]
        # run() closes the network on the way out
        assert server_net.handles() == []
        assert remote.handles() == []


class TestLateJoiners:
    def test_new_peer_gets_state_of_resting_ball(self, server_net, remote):
        server = solo_server(server_net)
        join(server_net, remote)
        for _ in range(3):
            server.tick(0.0)
        owned = server.balls.get(1)

        late = LoopbackConnectionManager()
        handle = join(server_net, late)
        server.tick(0.0)
        positions = late.receive_all(handle, Channel.POSITION)
        targets = late.receive_all(handle, Channel.TARGET_VELOCITY)
        # ball 2 is the late joiner's own, new this tick
        assert [u.ball_id for u in positions] == [1, 2]
        assert [u.ball_id for u in targets] == [1, 2]
        assert positions[0].x == pytest.approx(owned.position.x, abs=1e-5)
        assert positions[0].y == pytest.approx(owned.position.y, abs=1e-5)
        assert targets[0].value == owned.target_velocity

    def test_nothing_extra_before_first_broadcast(self, server, server_net, remote):
        handle = join(server_net, remote)
        server.tick(TICK)
        positions = remote.receive_all(handle, Channel.POSITION)
        assert len(positions) == len(server.balls)

    def test_nan_position_broadcast_once(self, server_net, remote):
        server = solo_server(server_net)
        handle = join(server_net, remote)
        server.tick(0.0)
        remote.receive_all(handle, Channel.POSITION)
        remote.send(handle, Channel.POSITION,
                    ComponentUpdate(1, Component.POSITION, float("nan"), 0.0))
        counts = []
        for _ in range(5):
            server.tick(0.0)
            counts.append(len(remote.receive_all(handle, Channel.POSITION)))
        assert counts == [1, 0, 0, 0, 0]


class TestUnknownPeers:
    def test_connection_without_peer_is_fatal(self, ghost_net):
        server = SyncServer(ghost_net, rng=random.Random(1))
        with pytest.raises(UnknownPeerError):
            server.tick(TICK)
