"""aisstream.io collector: long-running WebSocket ingest loop.

Connects to wss://stream.aisstream.io/v0/stream, subscribes to position and
static data reports for one bounding box, merges them into a VesselTable and
periodically writes a filtered snapshot for the read side.

The loop is an explicit state machine driven by ``step()``:

    HANDSHAKING --ok--> SUBSCRIBED --close/fault--> DISCONNECTED --backoff--> HANDSHAKING

It never terminates on its own; ``stop()`` moves it to STOPPED at the top of
the next step.

Usage:
    from straitfeed.config import Settings
    from straitfeed.modules.aisstream_client import AISCollector

    AISCollector.from_settings(Settings()).run_forever()
"""
from __future__ import annotations

import enum
import json
import logging
import time
from functools import partial
from pathlib import Path
from typing import Any, Callable

from straitfeed.modules.normalize import RECOGNIZED_MESSAGE_TYPES, MessageNormalizer
from straitfeed.modules.snapshot_writer import write_snapshot
from straitfeed.modules.vessel_table import VesselTable
from straitfeed.modules.ws_frames import Opcode, TransportError
from straitfeed.modules.ws_session import WebSocketSession
from straitfeed.utils.backoff import ExponentialBackoff
from straitfeed.utils.geo import BoundingBox

logger = logging.getLogger(__name__)


class CollectorState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    HANDSHAKING = "handshaking"
    SUBSCRIBED = "subscribed"
    STOPPED = "stopped"


def build_subscription(api_key: str, bbox: BoundingBox) -> dict[str, Any]:
    """The subscription message sent once per session."""
    return {
        "APIKey": api_key,
        "BoundingBoxes": [bbox.as_subscription_box()],
        "FiltersShipMMSI": [],
        "FilterMessageTypes": list(RECOGNIZED_MESSAGE_TYPES),
    }


class AISCollector:
    """Single-threaded collector: socket reads, merges and flushes share one control path."""

    def __init__(
        self,
        api_key: str,
        bbox: BoundingBox,
        table: VesselTable,
        cache_file: str | Path,
        session_factory: Callable[[], WebSocketSession],
        flush_interval: float = 2.0,
        stats_interval: float = 30.0,
        backoff: ExponentialBackoff | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        endpoint: str = "stream.aisstream.io",
    ) -> None:
        self.api_key = api_key
        self.bbox = bbox
        self.table = table
        self.normalizer = MessageNormalizer(table)
        self.cache_file = Path(cache_file)
        self.flush_interval = flush_interval
        self.stats_interval = stats_interval
        self.backoff = backoff or ExponentialBackoff()
        self.endpoint = endpoint
        self._session_factory = session_factory
        self._clock = clock
        self._sleep = sleep

        self.state = CollectorState.HANDSHAKING
        self._session: WebSocketSession | None = None
        self._stop_requested = False
        self._last_flush = 0.0
        self._last_stats = 0.0
        self._session_messages = 0
        self.stats: dict[str, int] = {
            "messages_received": 0,
            "decode_errors": 0,
            "sessions": 0,
            "reconnects": 0,
            "flushes": 0,
            "flush_errors": 0,
        }
        self._handlers: dict[CollectorState, Callable[[], CollectorState]] = {
            CollectorState.DISCONNECTED: self._on_disconnected,
            CollectorState.HANDSHAKING: self._on_handshaking,
            CollectorState.SUBSCRIBED: self._on_subscribed,
            CollectorState.STOPPED: self._on_stopped,
        }

    @classmethod
    def from_settings(cls, settings, table: VesselTable | None = None) -> "AISCollector":
        if table is None:
            table = VesselTable(stale_after=settings.SHIP_STALE_AFTER)
        factory = partial(
            WebSocketSession.open,
            settings.AISSTREAM_HOST,
            settings.AISSTREAM_PORT,
            settings.AISSTREAM_PATH,
            connect_timeout=settings.CONNECT_TIMEOUT,
            read_timeout=settings.READ_TIMEOUT,
        )
        return cls(
            api_key=settings.AISSTREAM_API_KEY,
            bbox=settings.bounding_box,
            table=table,
            cache_file=settings.CACHE_FILE,
            session_factory=factory,
            flush_interval=settings.FLUSH_INTERVAL,
            stats_interval=settings.STATS_INTERVAL,
            backoff=ExponentialBackoff(settings.RECONNECT_DELAY_MIN, settings.RECONNECT_DELAY_MAX),
            endpoint=f"{settings.AISSTREAM_HOST}{settings.AISSTREAM_PATH}",
        )

    # ------------------------------------------------------------------
    # Driving the state machine
    # ------------------------------------------------------------------

    def stop(self) -> None:
        """Request shutdown; honoured at the top of the next step."""
        self._stop_requested = True

    def step(self) -> CollectorState:
        """Run the handler for the current state and move to the state it returns."""
        if self._stop_requested:
            self.state = CollectorState.STOPPED
        try:
            next_state = self._handlers[self.state]()
        except (TransportError, OSError) as exc:
            logger.warning("Error: %s", exc)
            self._close_session()
            next_state = CollectorState.DISCONNECTED
        self.state = next_state
        return next_state

    def run_forever(self) -> None:
        try:
            while self.state is not CollectorState.STOPPED:
                self.step()
        finally:
            self._close_session()
        logger.info(
            "Collector stopped: %d msgs, %d flushes, %d sessions",
            self.stats["messages_received"], self.stats["flushes"], self.stats["sessions"],
        )

    # ------------------------------------------------------------------
    # State handlers
    # ------------------------------------------------------------------

    def _on_disconnected(self) -> CollectorState:
        self.stats["reconnects"] += 1
        self.backoff.wait(self._sleep)
        return CollectorState.HANDSHAKING

    def _on_handshaking(self) -> CollectorState:
        logger.info("Connecting to wss://%s ...", self.endpoint)
        self._session = self._session_factory()
        logger.info("Connected. Sending subscription...")
        self._session.send(json.dumps(build_subscription(self.api_key, self.bbox)))
        logger.info("Subscription sent. Listening for AIS messages...")

        self.backoff.reset()
        self.stats["sessions"] += 1
        now = self._clock()
        self._last_flush = now
        self._last_stats = now
        self._session_messages = 0
        return CollectorState.SUBSCRIBED

    def _on_subscribed(self) -> CollectorState:
        frame = self._session.receive()

        if frame is None:
            self._run_periodic()
            return CollectorState.SUBSCRIBED

        if frame.opcode == Opcode.CLOSE:
            logger.info("Server sent close frame")
            self._close_session()
            return CollectorState.DISCONNECTED
        if frame.opcode == Opcode.PING:
            self._session.pong(frame.payload)
            return CollectorState.SUBSCRIBED
        if frame.opcode not in (Opcode.TEXT, Opcode.BINARY):
            return CollectorState.SUBSCRIBED

        self._handle_payload(frame.payload)
        self._run_periodic()
        return CollectorState.SUBSCRIBED

    def _on_stopped(self) -> CollectorState:
        self._close_session()
        return CollectorState.STOPPED

    # ------------------------------------------------------------------
    # Work done while subscribed
    # ------------------------------------------------------------------

    def _handle_payload(self, payload: bytes) -> None:
        try:
            msg = json.loads(payload)
        except (ValueError, RecursionError):
            self.stats["decode_errors"] += 1
            return
        if not msg:
            return
        self.normalizer.apply(msg)
        self.stats["messages_received"] += 1
        self._session_messages += 1

    def _run_periodic(self) -> None:
        now = self._clock()
        if now - self._last_flush >= self.flush_interval:
            self.flush()
            self._last_flush = now
        if now - self._last_stats >= self.stats_interval:
            self.log_stats()
            self._last_stats = now

    def flush(self) -> bool:
        """Write the current snapshot; a failed write is retried next cycle."""
        vessels = self.table.snapshot(self.bbox)
        try:
            write_snapshot(self.cache_file, vessels)
        except OSError as exc:
            self.stats["flush_errors"] += 1
            logger.warning("Snapshot write to %s failed: %s", self.cache_file, exc)
            return False
        self.stats["flushes"] += 1
        return True

    def log_stats(self) -> None:
        logger.info(
            "Messages: %d | Ships in bbox: %d | Total tracked: %d",
            self._session_messages, self.table.count_in(self.bbox), len(self.table),
        )

    def _close_session(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None
