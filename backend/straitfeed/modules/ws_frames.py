"""WebSocket frame codec (RFC 6455 wire format).

Encodes client frames (always masked) and decodes server frames from any
socket-like byte source. The codec knows nothing about AIS messages.

Usage:
    from straitfeed.modules.ws_frames import encode_text_frame, decode_frame

    sock.sendall(encode_text_frame('{"APIKey": "..."}'))
    frame = decode_frame(sock)   # Frame, or None when the read timed out
"""
from __future__ import annotations

import enum
import os
import socket
import struct
from typing import NamedTuple, Protocol


class TransportError(Exception):
    """Connection-level fault: broken socket, truncated frame, failed handshake."""


class Opcode(enum.IntEnum):
    CONTINUATION = 0x0
    TEXT = 0x1
    BINARY = 0x2
    CLOSE = 0x8
    PING = 0x9
    PONG = 0xA


class Frame(NamedTuple):
    opcode: int
    payload: bytes


class ByteSource(Protocol):
    def recv(self, bufsize: int) -> bytes: ...


_FIN = 0x80
_MASK_BIT = 0x80
_LEN_16 = 126
_LEN_64 = 127
_MAX_CONTROL_PAYLOAD = 125

# Largest single recv() while reading a payload
CHUNK_SIZE = 8192

# Consecutive read timeouts tolerated once a frame has started (~10s at 0.5s)
MAX_STALLED_READS = 20


def apply_mask(payload: bytes, mask: bytes) -> bytes:
    """XOR *payload* with the 4-byte *mask*; the transform is its own inverse."""
    if not payload:
        return b""
    repeated = (mask * (len(payload) // 4 + 1))[: len(payload)]
    return (
        int.from_bytes(payload, "big") ^ int.from_bytes(repeated, "big")
    ).to_bytes(len(payload), "big")


def _encode_length(length: int) -> bytes:
    if length < _LEN_16:
        return bytes([_MASK_BIT | length])
    if length < 65536:
        return bytes([_MASK_BIT | _LEN_16]) + struct.pack("!H", length)
    return bytes([_MASK_BIT | _LEN_64]) + struct.pack("!Q", length)


def _encode_frame(opcode: Opcode, payload: bytes) -> bytes:
    mask = os.urandom(4)
    return (
        bytes([_FIN | opcode])
        + _encode_length(len(payload))
        + mask
        + apply_mask(payload, mask)
    )


def encode_text_frame(payload: str | bytes) -> bytes:
    """Build a single final, masked text frame."""
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return _encode_frame(Opcode.TEXT, payload)


def encode_pong_frame(payload: bytes = b"") -> bytes:
    """Build a masked pong frame echoing a ping payload (at most 125 bytes)."""
    if len(payload) > _MAX_CONTROL_PAYLOAD:
        raise ValueError(
            f"Control frame payload too long: {len(payload)} > {_MAX_CONTROL_PAYLOAD}"
        )
    return _encode_frame(Opcode.PONG, payload)


def _recv_exactly(source: ByteSource, n: int, idle_ok: bool = False) -> bytes | None:
    """Read exactly *n* bytes.

    With *idle_ok*, a timeout before the first byte returns None (the idle
    signal). Any other stall longer than MAX_STALLED_READS timeouts, or the
    peer closing the connection, raises TransportError.
    """
    buf = bytearray()
    stalls = 0
    while len(buf) < n:
        try:
            chunk = source.recv(min(n - len(buf), CHUNK_SIZE))
        except socket.timeout:
            if idle_ok and not buf:
                return None
            stalls += 1
            if stalls > MAX_STALLED_READS:
                raise TransportError(f"Truncated frame: got {len(buf)} of {n} bytes")
            continue
        except OSError as exc:
            raise TransportError(f"Read failed: {exc}") from exc
        if not chunk:
            raise TransportError("Connection closed by server")
        buf += chunk
        stalls = 0
    return bytes(buf)


def decode_frame(source: ByteSource) -> Frame | None:
    """Read one frame from *source*; None when no frame started within the read timeout."""
    header = _recv_exactly(source, 2, idle_ok=True)
    if header is None:
        return None

    opcode = header[0] & 0x0F
    masked = bool(header[1] & _MASK_BIT)
    length = header[1] & 0x7F

    if length == _LEN_16:
        (length,) = struct.unpack("!H", _recv_exactly(source, 2))
    elif length == _LEN_64:
        (length,) = struct.unpack("!Q", _recv_exactly(source, 8))

    if opcode >= Opcode.CLOSE and length > _MAX_CONTROL_PAYLOAD:
        raise TransportError(f"Control frame too long: {length} > {_MAX_CONTROL_PAYLOAD}")

    mask = _recv_exactly(source, 4) if masked else b""
    payload = _recv_exactly(source, length) if length else b""

    if masked:
        payload = apply_mask(payload, mask)
    return Frame(opcode, payload)
