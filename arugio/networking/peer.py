"""Connection manager interface and in-memory implementation.

ConnectionManager is the seam between the synchronization loops and the
transport. The loops only ever see opaque peer handles (handed out in
CONNECTED events), logical channels and decoded messages.

LoopbackConnectionManager links managers inside one process so the server
and client loops can be exercised without sockets. Messages still go
through the wire codec, so anything that would not survive the network
fails here too.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import deque

from arugio.networking.channels import CHANNELS, Channel, ChannelSettings
from arugio.networking.protocol import NetworkEvent, NetworkEventType
from arugio.networking.reliable import ReliableChannel
from arugio.networking.serialization import decode_message, encode_message

logger = logging.getLogger(__name__)


class UnknownPeerError(KeyError):
    """A peer handle with no live connection record was used.

    Handles only come from CONNECTED events, so this is a bookkeeping bug
    rather than a runtime condition to recover from.
    """


class PeerConnection:
    """Per-peer record: inbound queues and reliable channel state."""

    def __init__(
        self,
        handle: int,
        address: tuple[str, int] | None,
        channels: dict[Channel, ChannelSettings],
        now: float = 0.0,
    ) -> None:
        self.handle = handle
        self.address = address
        self.last_recv = now
        self.last_send = now
        self._inbound: dict[Channel, deque[object]] = {
            ch: deque(maxlen=settings.max_queued_messages)
            for ch, settings in channels.items()
        }
        self.reliable: dict[Channel, ReliableChannel] = {
            ch: ReliableChannel(settings.reliability, now)
            for ch, settings in channels.items()
            if settings.is_reliable and settings.reliability is not None
        }

    def push(self, channel: Channel, message: object) -> None:
        self._inbound[channel].append(message)

    def drain(self, channel: Channel) -> list[object]:
        queue = self._inbound[channel]
        messages = list(queue)
        queue.clear()
        return messages


class ConnectionManager(ABC):
    """Abstract interface for the multi-channel transport.

    The tick loops call poll() once per tick, then drain_events() and
    receive_all() per peer and channel. Sends are fire-and-forget: a failed
    send is logged and dropped, never raised.
    """

    def __init__(self, channels: dict[Channel, ChannelSettings] | None = None) -> None:
        self._channels = channels if channels is not None else CHANNELS

    @abstractmethod
    def poll(self) -> None:
        """Pump the transport. Non-blocking."""
        ...

    @abstractmethod
    def drain_events(self) -> list[NetworkEvent]:
        """Return and clear the connection events seen since the last call."""
        ...

    @abstractmethod
    def handles(self) -> list[int]:
        """Handles of all currently connected peers."""
        ...

    @abstractmethod
    def send(self, handle: int, channel: Channel, message: object) -> None:
        """Queue a message to one peer."""
        ...

    @abstractmethod
    def receive_all(self, handle: int, channel: Channel) -> list[object]:
        """Drain every message received from a peer on a channel.

        Raises UnknownPeerError if the handle has no live connection.
        """
        ...

    @abstractmethod
    def close(self) -> None:
        """Disconnect from all peers and release resources."""
        ...

    def broadcast(self, channel: Channel, message: object) -> None:
        """Send a message to every connected peer."""
        for handle in self.handles():
            self.send(handle, channel, message)

    def _encode(self, channel: Channel, message: object) -> bytes | None:
        """Encode a message body, or log and return None if it can't be sent."""
        try:
            body = encode_message(channel, message)
        except ValueError as e:
            logger.warning("Dropping message on %s: %s", channel.name, e)
            return None
        if len(body) > self._channels[channel].max_message_len:
            logger.warning(
                "Dropping %d byte message on %s (max %d)",
                len(body), channel.name, self._channels[channel].max_message_len,
            )
            return None
        return body


class LoopbackConnectionManager(ConnectionManager):
    """In-process transport. Delivery is immediate, lossless and ordered."""

    def __init__(self, channels: dict[Channel, ChannelSettings] | None = None) -> None:
        super().__init__(channels)
        self._peers: dict[int, PeerConnection] = {}
        self._links: dict[int, tuple[LoopbackConnectionManager, int]] = {}
        self._events: list[NetworkEvent] = []
        self._next_handle = 1

    def link(self, other: LoopbackConnectionManager) -> int:
        """Connect this manager to another. Returns the local handle.

        Both sides get a CONNECTED event.
        """
        local = self._open()
        remote = other._open()
        self._links[local] = (other, remote)
        other._links[remote] = (self, local)
        return local

    def unlink(self, handle: int) -> None:
        """Drop a link. Both sides get a DISCONNECTED event."""
        link = self._links.get(handle)
        if link is None:
            raise UnknownPeerError(handle)
        other, remote = link
        self._drop(handle)
        other._drop(remote)

    def poll(self) -> None:
        pass

    def drain_events(self) -> list[NetworkEvent]:
        events = self._events
        self._events = []
        return events

    def handles(self) -> list[int]:
        return list(self._peers)

    def send(self, handle: int, channel: Channel, message: object) -> None:
        link = self._links.get(handle)
        if link is None:
            logger.warning("Send to unknown peer %d on %s dropped", handle, channel.name)
            return
        body = self._encode(channel, message)
        if body is None:
            return
        other, remote = link
        other._deliver(remote, channel, body)

    def receive_all(self, handle: int, channel: Channel) -> list[object]:
        peer = self._peers.get(handle)
        if peer is None:
            raise UnknownPeerError(handle)
        return peer.drain(channel)

    def close(self) -> None:
        for handle in list(self._links):
            self.unlink(handle)

    def _open(self) -> int:
        handle = self._next_handle
        self._next_handle += 1
        self._peers[handle] = PeerConnection(handle, None, self._channels)
        self._events.append(NetworkEvent(NetworkEventType.CONNECTED, handle))
        return handle

    def _drop(self, handle: int) -> None:
        self._links.pop(handle, None)
        if self._peers.pop(handle, None) is not None:
            self._events.append(NetworkEvent(NetworkEventType.DISCONNECTED, handle))

    def _deliver(self, handle: int, channel: Channel, body: bytes) -> None:
        peer = self._peers.get(handle)
        if peer is None:
            return
        peer.push(channel, decode_message(channel, body))
