"""Tests for the aisstream collector state machine."""
from __future__ import annotations

import json
import struct
from unittest.mock import MagicMock, patch

import pytest

from straitfeed.modules.aisstream_client import AISCollector, CollectorState, build_subscription
from straitfeed.modules.ws_frames import Frame, Opcode, TransportError
from straitfeed.modules.ws_session import WebSocketSession
from straitfeed.utils.backoff import ExponentialBackoff


def _text(msg) -> Frame:
    return Frame(Opcode.TEXT, json.dumps(msg).encode())


def _position(mmsi=235012345, lat=51.0, lon=1.5) -> dict:
    return {
        "MessageType": "PositionReport",
        "MetaData": {"MMSI": mmsi},
        "Message": {"PositionReport": {"Latitude": lat, "Longitude": lon, "Sog": 10.0}},
    }


class FakeSession:
    """Scripted session: receive() pops frames; None is a read timeout."""

    def __init__(self, frames=()):
        self.frames = list(frames)
        self.sent: list[str] = []
        self.pongs: list[bytes] = []
        self.closed = False

    def send(self, text):
        self.sent.append(text)

    def pong(self, payload):
        self.pongs.append(payload)

    def receive(self):
        if not self.frames:
            return None
        item = self.frames.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def close(self):
        self.closed = True


@pytest.fixture
def make_collector(table, clock, dover_bbox, tmp_path):
    def _make(*sessions, **kwargs):
        factory = MagicMock(side_effect=list(sessions))
        sleep = MagicMock()
        collector = AISCollector(
            api_key="test-key",
            bbox=dover_bbox,
            table=table,
            cache_file=tmp_path / "ships.json",
            session_factory=factory,
            backoff=ExponentialBackoff(5, 60),
            clock=clock,
            sleep=sleep,
            **kwargs,
        )
        return collector, factory, sleep
    return _make


class TestSubscription:
    def test_shape(self, dover_bbox):
        sub = build_subscription("k", dover_bbox)
        assert sub == {
            "APIKey": "k",
            "BoundingBoxes": [[[50.7, 0.8], [51.4, 2.3]]],
            "FiltersShipMMSI": [],
            "FilterMessageTypes": [
                "PositionReport",
                "ShipStaticData",
                "StandardClassBPositionReport",
                "ExtendedClassBPositionReport",
            ],
        }

    def test_sent_once_on_handshake(self, make_collector):
        session = FakeSession()
        collector, factory, _ = make_collector(session)
        assert collector.state is CollectorState.HANDSHAKING
        assert collector.step() is CollectorState.SUBSCRIBED
        assert len(session.sent) == 1
        assert json.loads(session.sent[0])["APIKey"] == "test-key"


class TestSubscribed:
    def test_message_routed_to_table(self, make_collector, table):
        collector, _, _ = make_collector(FakeSession([_text(_position())]))
        collector.step()
        collector.step()
        assert table.get(235012345).lat == 51.0
        assert collector.stats["messages_received"] == 1

    def test_undecodable_payload_dropped(self, make_collector, table):
        session = FakeSession([Frame(Opcode.TEXT, b"{broken"), Frame(Opcode.BINARY, b"\xff\xfe")])
        collector, _, _ = make_collector(session)
        for _ in range(3):
            assert collector.step() is CollectorState.SUBSCRIBED
        assert len(table) == 0
        assert collector.stats["decode_errors"] == 2
        assert not session.closed

    def test_deeply_nested_payload_dropped(self, make_collector, table):
        session = FakeSession([Frame(Opcode.TEXT, b"[" * 200_000), _text(_position())])
        collector, _, _ = make_collector(session)
        for _ in range(3):
            assert collector.step() is CollectorState.SUBSCRIBED
        assert collector.stats["decode_errors"] == 1
        assert table.get(235012345).lat == 51.0
        assert not session.closed

    def test_oversized_number_does_not_stop_loop(self, make_collector, table):
        raw = (
            b'{"MessageType": "PositionReport", "MetaData": {"MMSI": 235012345},'
            b' "Message": {"PositionReport": {"Latitude": 51.0, "Longitude": 1.5, "Sog": 1'
            + b"0" * 400 + b"}}}"
        )
        collector, _, _ = make_collector(FakeSession([Frame(Opcode.TEXT, raw), Frame(Opcode.TEXT, raw)]))
        for _ in range(3):
            assert collector.step() is CollectorState.SUBSCRIBED
        assert collector.stats["messages_received"] == 2
        assert table.get(235012345).speed == 0.0

    def test_oversized_ping_reconnects(self, make_collector, fake_socket):
        ping = bytes([0x89, 126]) + struct.pack("!H", 200) + b"p" * 200
        sock = fake_socket([ping])
        session = WebSocketSession(sock, "stream.example.org")
        collector, _, _ = make_collector(session)
        assert collector.step() is CollectorState.SUBSCRIBED
        assert collector.step() is CollectorState.DISCONNECTED
        assert session.closed
        assert sock.closed

    def test_ping_answered_with_pong(self, make_collector):
        session = FakeSession([Frame(Opcode.PING, b"are-you-there")])
        collector, _, _ = make_collector(session)
        collector.step()
        assert collector.step() is CollectorState.SUBSCRIBED
        assert session.pongs == [b"are-you-there"]

    def test_pong_frame_ignored(self, make_collector, table):
        collector, _, _ = make_collector(FakeSession([Frame(Opcode.PONG, b"")]))
        collector.step()
        assert collector.step() is CollectorState.SUBSCRIBED
        assert collector.stats["messages_received"] == 0

    def test_close_frame_disconnects_cleanly(self, make_collector):
        session = FakeSession([Frame(Opcode.CLOSE, b"")])
        collector, _, _ = make_collector(session)
        collector.step()
        assert collector.step() is CollectorState.DISCONNECTED
        assert session.closed

    def test_transport_fault_disconnects(self, make_collector):
        session = FakeSession([TransportError("Connection closed by server")])
        collector, _, _ = make_collector(session)
        collector.step()
        assert collector.step() is CollectorState.DISCONNECTED
        assert session.closed


class TestFlushCadence:
    def test_three_timeouts_flush_once_when_interval_elapses(self, make_collector, clock, tmp_path):
        collector, _, _ = make_collector(FakeSession([None, None, None]), flush_interval=2.5)
        collector.step()
        with patch("straitfeed.modules.aisstream_client.write_snapshot") as write:
            for _ in range(3):
                clock.advance(1.0)
                collector.step()
        assert write.call_count == 1

    def test_three_timeouts_no_flush_within_interval(self, make_collector, clock):
        collector, _, _ = make_collector(FakeSession([None, None, None]), flush_interval=5.0)
        collector.step()
        with patch("straitfeed.modules.aisstream_client.write_snapshot") as write:
            for _ in range(3):
                clock.advance(1.0)
                collector.step()
        assert write.call_count == 0

    def test_message_path_applies_same_check(self, make_collector, clock, tmp_path):
        session = FakeSession([_text(_position())])
        collector, _, _ = make_collector(session, flush_interval=2.0)
        collector.step()
        clock.advance(2.0)
        collector.step()
        data = json.loads((tmp_path / "ships.json").read_text())
        assert [d["mmsi"] for d in data] == [235012345]
        assert collector.stats["flushes"] == 1

    def test_flush_failure_does_not_disconnect(self, make_collector, clock):
        session = FakeSession([None, None])
        collector, _, _ = make_collector(session, flush_interval=1.0)
        collector.step()
        with patch("straitfeed.modules.aisstream_client.write_snapshot",
                   side_effect=[PermissionError("read-only"), 0]) as write:
            clock.advance(1.0)
            assert collector.step() is CollectorState.SUBSCRIBED
            clock.advance(1.0)
            assert collector.step() is CollectorState.SUBSCRIBED
        assert write.call_count == 2
        assert collector.stats["flush_errors"] == 1
        assert collector.stats["flushes"] == 1
        assert not session.closed

    def test_stats_logged_on_own_cadence(self, make_collector, clock):
        collector, _, _ = make_collector(FakeSession([None] * 4), flush_interval=1.0, stats_interval=30.0)
        collector.step()
        with patch.object(collector, "log_stats") as log_stats, \
                patch("straitfeed.modules.aisstream_client.write_snapshot"):
            for _ in range(4):
                clock.advance(10.0)
                collector.step()
        assert log_stats.call_count == 1


class TestReconnect:
    def test_handshake_failure_backs_off_exponentially(self, make_collector):
        failures = [TransportError("refused")] * 4
        collector, factory, sleep = make_collector(*failures, FakeSession())
        states = [collector.step() for _ in range(9)]
        assert states == [
            CollectorState.DISCONNECTED, CollectorState.HANDSHAKING,
            CollectorState.DISCONNECTED, CollectorState.HANDSHAKING,
            CollectorState.DISCONNECTED, CollectorState.HANDSHAKING,
            CollectorState.DISCONNECTED, CollectorState.HANDSHAKING,
            CollectorState.SUBSCRIBED,
        ]
        assert [c.args[0] for c in sleep.call_args_list] == [5, 10, 20, 40]

    def test_backoff_capped(self, make_collector):
        collector, _, sleep = make_collector(*[TransportError("x")] * 6)
        for _ in range(12):
            collector.step()
        assert [c.args[0] for c in sleep.call_args_list] == [5, 10, 20, 40, 60, 60]

    def test_backoff_resets_after_subscribed(self, make_collector):
        first = FakeSession([TransportError("reset")])
        collector, _, sleep = make_collector(TransportError("refused"), first, FakeSession())
        for _ in range(6):
            collector.step()
        # refused -> 5s, subscribed (reset), dropped -> 5s again
        assert [c.args[0] for c in sleep.call_args_list] == [5, 5]
        assert collector.state is CollectorState.SUBSCRIBED

    def test_table_survives_reconnect(self, make_collector, table):
        first = FakeSession([_text(_position()), TransportError("reset")])
        collector, _, _ = make_collector(first, FakeSession())
        for _ in range(6):
            collector.step()
        assert 235012345 in table
        assert collector.stats["sessions"] == 2


class TestStop:
    def test_stop_closes_session(self, make_collector):
        session = FakeSession()
        collector, _, _ = make_collector(session)
        collector.step()
        collector.stop()
        assert collector.step() is CollectorState.STOPPED
        assert session.closed

    def test_run_forever_returns_after_stop(self, make_collector):
        session = FakeSession([_text(_position())])
        collector, _, _ = make_collector(session)
        original = session.receive

        def receive_then_stop():
            frame = original()
            if frame is None:
                collector.stop()
            return frame

        session.receive = receive_then_stop
        collector.run_forever()
        assert collector.state is CollectorState.STOPPED
        assert session.closed
        assert collector.stats["messages_received"] == 1


class TestFromSettings:
    def test_wires_settings(self):
        from straitfeed.config import Settings

        s = Settings(AISSTREAM_API_KEY="abc12345xyz", RECONNECT_DELAY_MIN=2, RECONNECT_DELAY_MAX=30,
                     SHIP_STALE_AFTER=120, _env_file=None)
        collector = AISCollector.from_settings(s)
        assert collector.api_key == "abc12345xyz"
        assert collector.backoff.delay == 2
        assert collector.backoff.maximum == 30
        assert collector.table.stale_after == 120
        assert collector.bbox == s.bounding_box
        assert collector.state is CollectorState.HANDSHAKING
