"""One encrypted WebSocket connection to a fixed host/port/path.

Pure I/O: opens the TLS socket, performs the HTTP Upgrade handshake and
exchanges frames. Retry policy belongs to the collector.
"""
from __future__ import annotations

import base64
import logging
import os
import socket
import ssl

from straitfeed.modules.ws_frames import (
    Frame,
    TransportError,
    decode_frame,
    encode_pong_frame,
    encode_text_frame,
)

logger = logging.getLogger(__name__)

# Upper bound on the handshake response head
_MAX_RESPONSE_HEAD = 16384


def _build_upgrade_request(host: str, path: str, key: str) -> bytes:
    return (
        f"GET {path} HTTP/1.1\r\n"
        f"Host: {host}\r\n"
        "Upgrade: websocket\r\n"
        "Connection: Upgrade\r\n"
        f"Sec-WebSocket-Key: {key}\r\n"
        "Sec-WebSocket-Version: 13\r\n"
        "\r\n"
    ).encode("ascii")


def _read_response_lines(sock: socket.socket) -> list[str]:
    """Read the HTTP response head line by line until the blank line.

    Reads one byte at a time so no frame bytes following the head are
    consumed from the socket.
    """
    lines: list[str] = []
    line = bytearray()
    total = 0
    while True:
        byte = sock.recv(1)
        if not byte:
            raise TransportError("Connection closed during handshake")
        total += 1
        if total > _MAX_RESPONSE_HEAD:
            raise TransportError("Handshake response too large")
        line += byte
        if line.endswith(b"\n"):
            text = line.decode("latin-1").strip()
            if not text:
                return lines
            lines.append(text)
            line.clear()


class WebSocketSession:
    """An open, handshaken WebSocket session over TLS."""

    def __init__(self, sock: socket.socket, host: str) -> None:
        self._sock: socket.socket | None = sock
        self.host = host

    @classmethod
    def open(
        cls,
        host: str,
        port: int,
        path: str,
        connect_timeout: float = 10.0,
        read_timeout: float = 0.5,
        ssl_context: ssl.SSLContext | None = None,
    ) -> "WebSocketSession":
        """Connect, verify the certificate, and complete the Upgrade handshake.

        Raises:
            TransportError: connect failure, TLS failure or handshake rejection.
        """
        if ssl_context is None:
            # Verifies the peer certificate chain and the hostname
            ssl_context = ssl.create_default_context()

        try:
            raw = socket.create_connection((host, port), timeout=connect_timeout)
        except OSError as exc:
            raise TransportError(f"Connection failed: {exc}") from exc

        try:
            sock = ssl_context.wrap_socket(raw, server_hostname=host)
        except OSError as exc:
            raw.close()
            raise TransportError(f"TLS handshake failed: {exc}") from exc

        session = cls(sock, host)
        try:
            session._handshake(path)
            sock.settimeout(read_timeout)
        except TransportError:
            session.close()
            raise
        except OSError as exc:
            session.close()
            raise TransportError(f"WebSocket handshake failed: {exc}") from exc
        return session

    def _handshake(self, path: str) -> None:
        key = base64.b64encode(os.urandom(16)).decode("ascii")
        self._require_socket().sendall(_build_upgrade_request(self.host, path, key))
        lines = _read_response_lines(self._require_socket())
        status = lines[0] if lines else ""
        if "101" not in status:
            raise TransportError(f"WebSocket handshake failed: {status or '<empty response>'}")
        logger.debug("Handshake complete: %s", status)

    def _require_socket(self) -> socket.socket:
        if self._sock is None:
            raise TransportError("Session is closed")
        return self._sock

    @property
    def closed(self) -> bool:
        return self._sock is None

    def send(self, text: str) -> None:
        self._write(encode_text_frame(text))

    def pong(self, payload: bytes) -> None:
        self._write(encode_pong_frame(payload))

    def receive(self) -> Frame | None:
        """Next frame, or None when nothing arrived within the read timeout."""
        return decode_frame(self._require_socket())

    def _write(self, data: bytes) -> None:
        try:
            self._require_socket().sendall(data)
        except OSError as exc:
            raise TransportError(f"Write failed: {exc}") from exc

    def close(self) -> None:
        """Release the socket. Safe to call more than once or on a broken session."""
        sock, self._sock = self._sock, None
        if sock is None:
            return
        try:
            sock.close()
        except OSError as exc:
            logger.debug("Ignoring error while closing socket: %s", exc)
