"""Channel registry.

Every message travels on one logical channel. Handshake messages need
reliable, ordered delivery. Motion state is sent on unreliable channels,
one per replicated component: each update supersedes the last, so
retransmitting a stale one would only add latency.

The set of channels is fixed and versioned by PROTOCOL_VERSION. Changing
it means bumping the version so old peers are refused at connect time.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

from arugio.config import (
    MAX_QUEUED_MESSAGES,
    RELIABLE_BANDWIDTH,
    RELIABLE_BURST_BANDWIDTH,
    RELIABLE_INIT_SEND,
    RELIABLE_INITIAL_RTT_MS,
    RELIABLE_MAX_MESSAGE_LEN,
    RELIABLE_MAX_RTT_MS,
    RELIABLE_RECV_WINDOW,
    RELIABLE_RTT_RESEND_FACTOR,
    RELIABLE_RTT_UPDATE_FACTOR,
    RELIABLE_SEND_WINDOW,
)
from arugio.simulation.state import Component


class Channel(IntEnum):
    """Logical channel ids (on the wire as u8)."""
    CLIENT_MESSAGE = 0   # client -> server, reliable (ClientHello)
    SERVER_MESSAGE = 1   # server -> client, reliable (ServerWelcome)
    POSITION = 2         # both ways, unreliable
    VELOCITY = 3         # both ways, unreliable (reserved, never broadcast)
    TARGET_VELOCITY = 4  # both ways, unreliable


class ChannelMode(IntEnum):
    RELIABLE = 0    # retransmitted, delivered in order
    UNRELIABLE = 1  # best effort, unordered, may drop


@dataclass(frozen=True, slots=True)
class ReliabilitySettings:
    """Knobs for a reliable channel's retransmission and flow control.

    Attributes:
        bandwidth: Sustained send budget in bytes per second.
        burst_bandwidth: Max bytes that may accumulate in the send budget.
        init_send: Bytes available before the budget first refills.
        send_window_size: Max unacknowledged messages in flight.
        recv_window_size: Max sequence distance buffered ahead of delivery.
        initial_rtt_ms: RTT estimate used before any ack arrives.
        max_rtt_ms: Ceiling for the RTT estimate and for resend timeouts.
        rtt_update_factor: Smoothing weight given to each new RTT sample.
        rtt_resend_factor: Resend timeout is rtt * factor, multiplied again
            by the factor on each further retry.
    """
    bandwidth: int = RELIABLE_BANDWIDTH
    burst_bandwidth: int = RELIABLE_BURST_BANDWIDTH
    init_send: int = RELIABLE_INIT_SEND
    send_window_size: int = RELIABLE_SEND_WINDOW
    recv_window_size: int = RELIABLE_RECV_WINDOW
    initial_rtt_ms: int = RELIABLE_INITIAL_RTT_MS
    max_rtt_ms: int = RELIABLE_MAX_RTT_MS
    rtt_update_factor: float = RELIABLE_RTT_UPDATE_FACTOR
    rtt_resend_factor: float = RELIABLE_RTT_RESEND_FACTOR


@dataclass(frozen=True, slots=True)
class ChannelSettings:
    channel: Channel
    mode: ChannelMode
    reliability: ReliabilitySettings | None = None
    max_message_len: int = RELIABLE_MAX_MESSAGE_LEN
    max_queued_messages: int | None = None  # None = unbounded inbound queue

    @property
    def is_reliable(self) -> bool:
        return self.mode == ChannelMode.RELIABLE


def _reliable(channel: Channel) -> ChannelSettings:
    return ChannelSettings(
        channel=channel,
        mode=ChannelMode.RELIABLE,
        reliability=ReliabilitySettings(),
    )


def _component(channel: Channel) -> ChannelSettings:
    return ChannelSettings(
        channel=channel,
        mode=ChannelMode.UNRELIABLE,
        max_queued_messages=MAX_QUEUED_MESSAGES,
    )


CHANNELS: dict[Channel, ChannelSettings] = {
    Channel.CLIENT_MESSAGE: _reliable(Channel.CLIENT_MESSAGE),
    Channel.SERVER_MESSAGE: _reliable(Channel.SERVER_MESSAGE),
    Channel.POSITION: _component(Channel.POSITION),
    Channel.VELOCITY: _component(Channel.VELOCITY),
    Channel.TARGET_VELOCITY: _component(Channel.TARGET_VELOCITY),
}

COMPONENT_CHANNELS: dict[Component, Channel] = {
    Component.POSITION: Channel.POSITION,
    Component.VELOCITY: Channel.VELOCITY,
    Component.TARGET_VELOCITY: Channel.TARGET_VELOCITY,
}


def channel_for_component(component: Component) -> Channel:
    return COMPONENT_CHANNELS[component]


def component_for_channel(channel: Channel) -> Component | None:
    """The component a channel replicates, or None for control channels."""
    for component, ch in COMPONENT_CHANNELS.items():
        if ch == channel:
            return component
    return None
