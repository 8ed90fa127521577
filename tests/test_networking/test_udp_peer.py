"""Integration tests for UdpConnectionManager with a server and a client on localhost."""

import socket
import time

import pytest

from arugio.networking.channels import Channel
from arugio.networking.protocol import (
    ClientHello,
    ComponentUpdate,
    NetworkEvent,
    NetworkEventType,
    PacketType,
    ServerWelcome,
)
from arugio.networking.serialization import encode_packet, encode_version
from arugio.networking.udp_peer import UdpConnectionManager
from arugio.simulation.state import Component


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def pump(*managers, until, timeout=2.0):
    """Poll every manager until the condition holds or the timeout passes."""
    deadline = time.monotonic() + timeout
    while not until():
        for m in managers:
            m.poll()
        if time.monotonic() > deadline:
            pytest.fail("Condition not met within timeout")
        time.sleep(0.01)


def connect_pair(server_clock=time.monotonic):
    server = UdpConnectionManager(clock=server_clock)
    client = UdpConnectionManager()
    server.listen("127.0.0.1", 0)  # bind to random port
    port = server.local_address[1]
    client.connect("127.0.0.1", port)
    pump(server, client, until=lambda: server.is_connected() and client.is_connected(), timeout=5)
    return server, client


@pytest.fixture
def udp_pair():
    """Create a connected server and client on localhost."""
    server, client = connect_pair()
    yield server, client
    client.close()
    server.close()


class TestConnection:
    def test_peers_connect(self, udp_pair):
        server, client = udp_pair
        assert server.handles() == [1]
        assert client.handles() == [1]

    def test_connected_events(self, udp_pair):
        server, client = udp_pair
        assert server.drain_events() == [NetworkEvent(NetworkEventType.CONNECTED, 1)]
        assert client.drain_events() == [NetworkEvent(NetworkEventType.CONNECTED, 1)]

    def test_client_close_disconnects_server_side(self, udp_pair):
        server, client = udp_pair
        server.drain_events()
        client.close()
        pump(server, until=lambda: not server.is_connected())
        assert server.drain_events() == [NetworkEvent(NetworkEventType.DISCONNECTED, 1)]

    def test_wrong_version_refused(self):
        server = UdpConnectionManager()
        server.listen("127.0.0.1", 0)
        raw = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            raw.sendto(encode_packet(PacketType.CONNECT, encode_version(99)), server.local_address)
            raw.sendto(b"garbage", server.local_address)
            time.sleep(0.05)
            server.poll()
            assert not server.is_connected()
            assert server.drain_events() == []
        finally:
            raw.close()
            server.close()


class TestMessages:
    def test_reliable_client_to_server(self, udp_pair):
        server, client = udp_pair
        client.send(1, Channel.CLIENT_MESSAGE, ClientHello())
        received = []
        pump(server, client, until=lambda: received.extend(
            server.receive_all(1, Channel.CLIENT_MESSAGE)) or received)
        assert received == [ClientHello()]

    def test_reliable_server_to_client_in_order(self, udp_pair):
        server, client = udp_pair
        for ball_id in (4, 5, 6):
            server.send(1, Channel.SERVER_MESSAGE, ServerWelcome(ball_id))
        received = []
        pump(server, client, until=lambda: received.extend(
            client.receive_all(1, Channel.SERVER_MESSAGE)) or len(received) >= 3)
        assert received == [ServerWelcome(4), ServerWelcome(5), ServerWelcome(6)]

    def test_reliable_messages_acked(self, udp_pair):
        server, client = udp_pair
        client.send(1, Channel.CLIENT_MESSAGE, ClientHello())
        reliable = client._peers[1].reliable[Channel.CLIENT_MESSAGE]
        pump(server, client, until=lambda: reliable.in_flight == 0)

    def test_unreliable_component_update(self, udp_pair):
        server, client = udp_pair
        update = ComponentUpdate(2, Component.TARGET_VELOCITY, 0.5, -0.5)
        server.broadcast(Channel.TARGET_VELOCITY, update)
        received = []
        pump(server, client, until=lambda: received.extend(
            client.receive_all(1, Channel.TARGET_VELOCITY)) or received)
        assert received == [update]


class TestTimeout:
    def test_silent_peer_dropped(self):
        clock = FakeClock()
        server, client = connect_pair(server_clock=clock)
        try:
            server.drain_events()
            clock.now = 11.0
            server.poll()
            assert not server.is_connected()
            assert server.drain_events() == [NetworkEvent(NetworkEventType.DISCONNECTED, 1)]
        finally:
            client.close()
            server.close()
