"""Reliable, ordered delivery on top of unreliable datagrams.

One ReliableChannel exists per (peer, reliable channel). The sender side
numbers messages with 16-bit wrapping sequence numbers, keeps them until
acked and resends on an RTT-based timer with exponential backoff. The
receiver side acks every message it accepts and releases them in sequence
order, buffering early arrivals inside the receive window.

The channel never touches a socket. Callers feed it a clock value and
move the returned bytes over the wire themselves.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass

from arugio.networking.channels import ReliabilitySettings

SEQUENCE_MASK = 0xFFFF
HALF_SEQUENCE = 0x8000


def sequence_distance(a: int, b: int) -> int:
    """How far sequence a is ahead of b, modulo 2^16."""
    return (a - b) & SEQUENCE_MASK


@dataclass(slots=True)
class _InFlight:
    body: bytes
    first_sent: float
    last_sent: float
    attempts: int


class ReliableChannel:
    """Sender and receiver state for one reliable channel to one peer."""

    def __init__(self, settings: ReliabilitySettings, now: float = 0.0) -> None:
        self._settings = settings
        # Sender
        self._pending: deque[bytes] = deque()
        self._in_flight: dict[int, _InFlight] = {}
        self._next_send_seq = 0
        self._rtt = settings.initial_rtt_ms / 1000.0
        self._budget = float(settings.init_send)
        self._last_refill = now
        # Receiver
        self._next_recv_seq = 0
        self._reorder: dict[int, bytes] = {}

    @property
    def rtt(self) -> float:
        """Smoothed round-trip estimate in seconds."""
        return self._rtt

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    @property
    def pending(self) -> int:
        """Messages queued but not yet sent even once."""
        return len(self._pending)

    def queue(self, body: bytes) -> None:
        self._pending.append(body)

    def resend_timeout(self, attempts: int) -> float:
        """Seconds to wait after the given number of sends before resending."""
        max_rtt = self._settings.max_rtt_ms / 1000.0
        return min(self._rtt * self._settings.rtt_resend_factor ** attempts, max_rtt)

    def poll_send(self, now: float) -> list[tuple[int, bytes]]:
        """Return the (sequence, body) pairs that should go out now.

        Overdue retransmissions go first, then new messages while the send
        window and the bandwidth budget allow.
        """
        self._refill(now)
        out: list[tuple[int, bytes]] = []

        for seq, entry in self._in_flight.items():
            if now - entry.last_sent < self.resend_timeout(entry.attempts):
                continue
            if not self._spend(len(entry.body)):
                return out
            entry.last_sent = now
            entry.attempts += 1
            out.append((seq, entry.body))

        while self._pending and len(self._in_flight) < self._settings.send_window_size:
            body = self._pending[0]
            if not self._spend(len(body)):
                break
            self._pending.popleft()
            seq = self._next_send_seq
            self._next_send_seq = (seq + 1) & SEQUENCE_MASK
            self._in_flight[seq] = _InFlight(body, now, now, 1)
            out.append((seq, body))
        return out

    def on_ack(self, seq: int, now: float) -> None:
        """The peer received our message with this sequence."""
        entry = self._in_flight.pop(seq, None)
        if entry is None:
            return
        # Only first-attempt samples are unambiguous
        if entry.attempts == 1:
            sample = now - entry.first_sent
            self._rtt += (sample - self._rtt) * self._settings.rtt_update_factor
            self._rtt = min(self._rtt, self._settings.max_rtt_ms / 1000.0)

    def on_receive(self, seq: int, body: bytes) -> tuple[bool, list[bytes]]:
        """Accept an inbound message.

        Returns (ack, delivered): whether the sender should get an ack, and
        the bodies now deliverable in order (possibly empty).
        """
        distance = sequence_distance(seq, self._next_recv_seq)
        if distance >= HALF_SEQUENCE:
            # Already delivered; the earlier ack was probably lost.
            return True, []
        if distance >= self._settings.recv_window_size:
            return False, []
        self._reorder[seq] = body

        delivered: list[bytes] = []
        while self._next_recv_seq in self._reorder:
            delivered.append(self._reorder.pop(self._next_recv_seq))
            self._next_recv_seq = (self._next_recv_seq + 1) & SEQUENCE_MASK
        return True, delivered

    def _refill(self, now: float) -> None:
        elapsed = max(0.0, now - self._last_refill)
        self._last_refill = now
        self._budget = min(
            float(self._settings.burst_bandwidth),
            self._budget + elapsed * self._settings.bandwidth,
        )

    def _spend(self, cost: int) -> bool:
        # A full budget always lets one message through, even an oversized one.
        if self._budget >= cost or self._budget >= self._settings.burst_bandwidth:
            self._budget -= cost
            return True
        return False
