"""UDP-based ConnectionManager implementation.

One non-blocking UDP socket multiplexes every peer and every logical
channel. A server listens and accepts any number of clients; a client
connects to one server, retrying CONNECT until it is acknowledged.

Reliable channels are driven by a ReliableChannel per peer. Unreliable
channels send each message once, as a single datagram. Peers that go
silent are dropped after CONNECTION_TIMEOUT_MS and reported as
DISCONNECTED.
"""

from __future__ import annotations

import logging
import socket
import time
from typing import Callable

from arugio.config import (
    CONNECT_RETRY_MS,
    CONNECTION_TIMEOUT_MS,
    DEFAULT_HOST,
    DEFAULT_PORT,
    HEARTBEAT_INTERVAL_MS,
    MAX_PACKET_SIZE,
    PROTOCOL_VERSION,
)
from arugio.networking.channels import Channel, ChannelSettings
from arugio.networking.peer import ConnectionManager, PeerConnection, UnknownPeerError
from arugio.networking.protocol import NetworkEvent, NetworkEventType, PacketType
from arugio.networking.serialization import (
    decode_ack,
    decode_envelope,
    decode_message,
    decode_packet,
    decode_version,
    encode_ack,
    encode_envelope,
    encode_packet,
    encode_version,
)

logger = logging.getLogger(__name__)


class UdpConnectionManager(ConnectionManager):
    """Real UDP transport for the server and for clients."""

    def __init__(
        self,
        channels: dict[Channel, ChannelSettings] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(channels)
        self._clock = clock
        self._sock: socket.socket | None = None
        self._is_server = False
        self._peers: dict[int, PeerConnection] = {}
        self._addr_to_handle: dict[tuple[str, int], int] = {}
        self._events: list[NetworkEvent] = []
        self._next_handle = 1

        # Client connection state
        self._server_addr: tuple[str, int] | None = None
        self._last_connect_attempt: float | None = None

    @property
    def local_address(self) -> tuple[str, int] | None:
        """The (host, port) our socket is bound to."""
        if self._sock is None:
            return None
        return self._sock.getsockname()

    def listen(self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT) -> None:
        """Bind a UDP socket and accept incoming clients (server side)."""
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._sock.bind((host, port))
        self._sock.setblocking(False)
        self._is_server = True
        logger.info("Listening on %s:%d", *self._sock.getsockname())

    def connect(self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT) -> None:
        """Start connecting to a server (client side).

        The CONNECT request is retried from poll() until acknowledged.
        """
        if self._sock is None:
            self._sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            self._sock.setblocking(False)
        self._is_server = False
        # Replies come from the numeric address, so resolve names up front
        self._server_addr = (socket.gethostbyname(host), port)
        self._send_connect(self._clock())
        logger.info("Connecting to %s:%d...", host, port)

    def is_connected(self) -> bool:
        return bool(self._peers)

    def poll(self) -> None:
        """Read all pending datagrams, then run timers."""
        if self._sock is None:
            return
        now = self._clock()
        while True:
            try:
                data, addr = self._sock.recvfrom(MAX_PACKET_SIZE)
            except BlockingIOError:
                break
            except OSError as e:
                logger.debug("Receive failed: %s", e)
                break
            self._handle_packet(data, addr, now)

        self._check_timeouts(now)
        self._retry_connect(now)
        for peer in list(self._peers.values()):
            self._flush_reliable(peer, now)
            if now - peer.last_send >= HEARTBEAT_INTERVAL_MS / 1000:
                self._send_packet(peer, encode_packet(PacketType.HEARTBEAT), now)

    def drain_events(self) -> list[NetworkEvent]:
        events = self._events
        self._events = []
        return events

    def handles(self) -> list[int]:
        return list(self._peers)

    def send(self, handle: int, channel: Channel, message: object) -> None:
        peer = self._peers.get(handle)
        if peer is None:
            logger.warning("Send to unknown peer %d on %s dropped", handle, channel.name)
            return
        body = self._encode(channel, message)
        if body is None:
            return
        now = self._clock()
        reliable = peer.reliable.get(channel)
        if reliable is not None:
            reliable.queue(body)
            self._flush_reliable(peer, now)
        else:
            packet = encode_packet(PacketType.MESSAGE, encode_envelope(channel, 0, body))
            self._send_packet(peer, packet, now)

    def receive_all(self, handle: int, channel: Channel) -> list[object]:
        peer = self._peers.get(handle)
        if peer is None:
            raise UnknownPeerError(handle)
        return peer.drain(channel)

    def close(self) -> None:
        """Tell every peer we're leaving and close the socket."""
        now = self._clock()
        for handle in list(self._peers):
            self._send_packet(self._peers[handle], encode_packet(PacketType.DISCONNECT), now)
            self._drop(handle)
        self._server_addr = None
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    # --- Inbound ---

    def _handle_packet(self, data: bytes, addr: tuple[str, int], now: float) -> None:
        try:
            packet_type, payload = decode_packet(data)
        except ValueError as e:
            logger.warning("Malformed packet from %s: %s", addr, e)
            return

        if packet_type == PacketType.CONNECT:
            self._handle_connect(payload, addr, now)
            return
        if packet_type == PacketType.CONNECT_ACK:
            self._handle_connect_ack(payload, addr, now)
            return

        handle = self._addr_to_handle.get(addr)
        if handle is None:
            logger.debug("%s packet from unknown address %s", packet_type.name, addr)
            return
        peer = self._peers[handle]
        peer.last_recv = now

        if packet_type == PacketType.MESSAGE:
            self._handle_message(peer, payload, now)
        elif packet_type == PacketType.ACK:
            self._handle_ack(peer, payload, now)
        elif packet_type == PacketType.DISCONNECT:
            logger.info("Peer %d disconnected", handle)
            self._drop(handle)

    def _handle_connect(self, payload: bytes, addr: tuple[str, int], now: float) -> None:
        if not self._is_server:
            return
        try:
            version = decode_version(payload)
        except ValueError as e:
            logger.warning("Bad CONNECT from %s: %s", addr, e)
            return
        if version != PROTOCOL_VERSION:
            logger.warning(
                "Refusing %s: protocol version %d, expected %d",
                addr, version, PROTOCOL_VERSION,
            )
            return

        handle = self._addr_to_handle.get(addr)
        if handle is None:
            handle = self._open(addr, now)
            logger.info("Peer %d connected from %s:%d", handle, addr[0], addr[1])
        # Ack every CONNECT: the previous ack may have been lost
        ack = encode_packet(PacketType.CONNECT_ACK, encode_version(PROTOCOL_VERSION))
        self._send_packet(self._peers[handle], ack, now)

    def _handle_connect_ack(self, payload: bytes, addr: tuple[str, int], now: float) -> None:
        if self._is_server or addr != self._server_addr or addr in self._addr_to_handle:
            return
        try:
            version = decode_version(payload)
        except ValueError as e:
            logger.warning("Bad CONNECT_ACK from %s: %s", addr, e)
            return
        if version != PROTOCOL_VERSION:
            logger.error("Server speaks protocol version %d, expected %d", version, PROTOCOL_VERSION)
            return
        self._open(addr, now)
        logger.info("Connected to %s:%d", addr[0], addr[1])

    def _handle_message(self, peer: PeerConnection, payload: bytes, now: float) -> None:
        try:
            channel, seq, body = decode_envelope(payload)
        except ValueError as e:
            logger.warning("Malformed message from peer %d: %s", peer.handle, e)
            return
        if channel not in self._channels:
            logger.warning("Message on unregistered channel %s", channel.name)
            return

        reliable = peer.reliable.get(channel)
        if reliable is None:
            bodies = [body]
        else:
            ack, bodies = reliable.on_receive(seq, body)
            if ack:
                packet = encode_packet(PacketType.ACK, encode_ack(channel, seq))
                self._send_packet(peer, packet, now)

        for b in bodies:
            try:
                peer.push(channel, decode_message(channel, b))
            except ValueError as e:
                logger.warning("Dropping bad %s message from peer %d: %s",
                               channel.name, peer.handle, e)

    def _handle_ack(self, peer: PeerConnection, payload: bytes, now: float) -> None:
        try:
            channel, seq = decode_ack(payload)
        except ValueError as e:
            logger.warning("Malformed ack from peer %d: %s", peer.handle, e)
            return
        reliable = peer.reliable.get(channel)
        if reliable is not None:
            reliable.on_ack(seq, now)

    # --- Outbound & timers ---

    def _flush_reliable(self, peer: PeerConnection, now: float) -> None:
        for channel, reliable in peer.reliable.items():
            for seq, body in reliable.poll_send(now):
                packet = encode_packet(PacketType.MESSAGE, encode_envelope(channel, seq, body))
                self._send_packet(peer, packet, now)

    def _send_connect(self, now: float) -> None:
        if self._sock is None or self._server_addr is None:
            return
        self._last_connect_attempt = now
        packet = encode_packet(PacketType.CONNECT, encode_version(PROTOCOL_VERSION))
        self._send_raw(packet, self._server_addr)

    def _retry_connect(self, now: float) -> None:
        if self._is_server or self._server_addr is None:
            return
        if self._server_addr in self._addr_to_handle:
            return
        if (self._last_connect_attempt is None
                or now - self._last_connect_attempt >= CONNECT_RETRY_MS / 1000):
            self._send_connect(now)

    def _check_timeouts(self, now: float) -> None:
        for handle, peer in list(self._peers.items()):
            if now - peer.last_recv > CONNECTION_TIMEOUT_MS / 1000:
                logger.warning("Peer %d timed out", handle)
                self._drop(handle)

    def _send_packet(self, peer: PeerConnection, data: bytes, now: float) -> None:
        peer.last_send = now
        self._send_raw(data, peer.address)

    def _send_raw(self, data: bytes, addr: tuple[str, int] | None) -> None:
        if self._sock is None or addr is None:
            return
        try:
            self._sock.sendto(data, addr)
        except OSError as e:
            logger.warning("Send to %s failed: %s", addr, e)

    # --- Bookkeeping ---

    def _open(self, addr: tuple[str, int], now: float) -> int:
        handle = self._next_handle
        self._next_handle += 1
        self._peers[handle] = PeerConnection(handle, addr, self._channels, now)
        self._addr_to_handle[addr] = handle
        self._events.append(NetworkEvent(NetworkEventType.CONNECTED, handle))
        return handle

    def _drop(self, handle: int) -> None:
        peer = self._peers.pop(handle, None)
        if peer is None:
            return
        self._addr_to_handle.pop(peer.address, None)
        self._events.append(NetworkEvent(NetworkEventType.DISCONNECTED, handle))
