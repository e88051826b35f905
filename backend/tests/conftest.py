"""Shared test fixtures: fake clock, fake socket, vessel table."""
import socket

import pytest

from straitfeed.modules.vessel_table import VesselTable
from straitfeed.utils.geo import BoundingBox


class FakeClock:
    """Manually advanced clock usable wherever time.time / time.monotonic is injected."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSocket:
    """Socket double fed from a script of byte chunks.

    Each script entry is either bytes (served across recv() calls, at most
    *max_recv* bytes at a time) or the TIMEOUT marker, which makes one recv()
    raise socket.timeout. An exhausted script times out forever unless
    *eof_when_empty* is set, in which case recv() returns b"".
    """

    TIMEOUT = object()

    def __init__(self, script=(), max_recv: int | None = None, eof_when_empty: bool = False):
        self.script = list(script)
        self.max_recv = max_recv
        self.eof_when_empty = eof_when_empty
        self.sent = bytearray()
        self.closed = False
        self.timeout = None

    def feed(self, *items) -> None:
        self.script.extend(items)

    def recv(self, bufsize: int) -> bytes:
        if not self.script:
            if self.eof_when_empty:
                return b""
            raise socket.timeout("timed out")
        item = self.script[0]
        if item is FakeSocket.TIMEOUT:
            self.script.pop(0)
            raise socket.timeout("timed out")
        n = bufsize if self.max_recv is None else min(bufsize, self.max_recv)
        chunk, rest = item[:n], item[n:]
        if rest:
            self.script[0] = rest
        else:
            self.script.pop(0)
        return chunk

    def sendall(self, data: bytes) -> None:
        self.sent += data

    def settimeout(self, value) -> None:
        self.timeout = value

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def table(clock):
    return VesselTable(stale_after=300, clock=clock)


@pytest.fixture
def dover_bbox():
    return BoundingBox(lat_min=50.7, lon_min=0.8, lat_max=51.4, lon_max=2.3)


@pytest.fixture
def fake_socket():
    """Factory for scripted sockets: ``fake_socket([b"...", fake_socket.TIMEOUT])``."""
    return FakeSocket
