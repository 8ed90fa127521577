"""Binary serialization for packets and channel messages.

All encoding uses struct for a compact binary format.
Network byte order (big-endian) throughout.

Wire format for a full packet:
    [protocol_id:u32][packet_type:u8][payload_len:u16][payload:bytes]

Packet payloads:
    CONNECT / CONNECT_ACK:  [protocol_version:u16]
    MESSAGE:                [channel:u8][sequence:u16][message body]
    ACK:                    [channel:u8][sequence:u16]
    HEARTBEAT / DISCONNECT: empty

Message bodies per channel:
    CLIENT_MESSAGE:  [kind:u8]                  (ClientHello)
    SERVER_MESSAGE:  [kind:u8][ball_id:u32]     (ServerWelcome)
    component:       [ball_id:u32][x:f32][y:f32]
"""

from __future__ import annotations

import struct

from arugio.networking.channels import Channel, component_for_channel
from arugio.networking.protocol import (
    ClientHello,
    ClientMessageKind,
    ComponentUpdate,
    PacketType,
    ServerMessageKind,
    ServerWelcome,
)

PROTOCOL_ID = 0x41525547  # "ARUG" in ASCII


# --- Packet framing ---

PACKET_HEADER = struct.Struct("!IBH")  # protocol_id (u32), packet_type (u8), payload_len (u16)


def encode_packet(packet_type: PacketType, payload: bytes = b"") -> bytes:
    """Wrap a payload in a packet frame."""
    return PACKET_HEADER.pack(PROTOCOL_ID, packet_type, len(payload)) + payload


def decode_packet(data: bytes) -> tuple[PacketType, bytes]:
    """Unwrap a packet frame into (type, payload).

    Raises ValueError if the data is too short, foreign or malformed.
    """
    if len(data) < PACKET_HEADER.size:
        raise ValueError("Packet too short")
    protocol_id, packet_type_raw, payload_len = PACKET_HEADER.unpack_from(data)
    if protocol_id != PROTOCOL_ID:
        raise ValueError(f"Invalid protocol ID: {protocol_id:#x}")
    packet_type = PacketType(packet_type_raw)
    payload = data[PACKET_HEADER.size:PACKET_HEADER.size + payload_len]
    if len(payload) < payload_len:
        raise ValueError("Payload truncated")
    return packet_type, payload


# --- Handshake ---

VERSION_FMT = struct.Struct("!H")


def encode_version(version: int) -> bytes:
    return VERSION_FMT.pack(version)


def decode_version(data: bytes) -> int:
    if len(data) < VERSION_FMT.size:
        raise ValueError("Version payload too short")
    (version,) = VERSION_FMT.unpack_from(data)
    return version


# --- Channel message envelope ---

MESSAGE_HEADER = struct.Struct("!BH")  # channel (u8), sequence (u16)
ACK_FMT = MESSAGE_HEADER


def encode_envelope(channel: Channel, sequence: int, body: bytes) -> bytes:
    return MESSAGE_HEADER.pack(channel, sequence & 0xFFFF) + body


def decode_envelope(data: bytes) -> tuple[Channel, int, bytes]:
    """Returns (channel, sequence, body)."""
    if len(data) < MESSAGE_HEADER.size:
        raise ValueError("Message envelope too short")
    channel_raw, sequence = MESSAGE_HEADER.unpack_from(data)
    return Channel(channel_raw), sequence, data[MESSAGE_HEADER.size:]


def encode_ack(channel: Channel, sequence: int) -> bytes:
    return ACK_FMT.pack(channel, sequence & 0xFFFF)


def decode_ack(data: bytes) -> tuple[Channel, int]:
    """Returns (channel, sequence)."""
    if len(data) < ACK_FMT.size:
        raise ValueError("Ack too short")
    channel_raw, sequence = ACK_FMT.unpack_from(data)
    return Channel(channel_raw), sequence


# --- Message bodies ---

KIND_FMT = struct.Struct("!B")
WELCOME_FMT = struct.Struct("!BI")        # kind (u8), ball_id (u32)
COMPONENT_FMT = struct.Struct("!Iff")     # ball_id (u32), x (f32), y (f32)


def encode_message(channel: Channel, message: object) -> bytes:
    """Encode the body of a message for the given channel.

    Raises ValueError if the message does not belong on that channel.
    """
    if channel == Channel.CLIENT_MESSAGE:
        if not isinstance(message, ClientHello):
            raise ValueError(f"{message!r} cannot be sent on {channel.name}")
        return KIND_FMT.pack(ClientMessageKind.HELLO)
    if channel == Channel.SERVER_MESSAGE:
        if not isinstance(message, ServerWelcome):
            raise ValueError(f"{message!r} cannot be sent on {channel.name}")
        try:
            return WELCOME_FMT.pack(ServerMessageKind.WELCOME, message.ball_id)
        except struct.error as e:
            raise ValueError(f"Unencodable welcome: {e}") from e
    component = component_for_channel(channel)
    if not isinstance(message, ComponentUpdate) or message.component != component:
        raise ValueError(f"{message!r} cannot be sent on {channel.name}")
    try:
        return COMPONENT_FMT.pack(message.ball_id, message.x, message.y)
    except (struct.error, OverflowError) as e:
        raise ValueError(f"Unencodable {channel.name} message: {e}") from e


def decode_message(channel: Channel, data: bytes) -> object:
    """Decode a message body received on the given channel."""
    try:
        if channel == Channel.CLIENT_MESSAGE:
            (kind,) = KIND_FMT.unpack_from(data)
            ClientMessageKind(kind)
            return ClientHello()
        if channel == Channel.SERVER_MESSAGE:
            kind, ball_id = WELCOME_FMT.unpack_from(data)
            ServerMessageKind(kind)
            return ServerWelcome(ball_id)
        ball_id, x, y = COMPONENT_FMT.unpack_from(data)
    except struct.error as e:
        raise ValueError(f"Malformed {channel.name} message: {e}") from e
    return ComponentUpdate(ball_id, component_for_channel(channel), x, y)
