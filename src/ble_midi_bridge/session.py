"""One live BLE-MIDI connection: notifications in, MIDI out, link supervision."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .ble.blemidi_parse import DecoderContext, MalformedPacketError, decode_packet, encode_packet
from .config import AppConfig
from .logs import NullEventLog
from .midi import ACTIVE_SENSING, NOTE_MESSAGES, MidiEvent
from .sink import SinkError
from .transform import apply_octave_offset, was_clamped

logger = logging.getLogger(__name__)


class SessionEndReason(Enum):
    REMOTE_DISCONNECTED = "remote_disconnected"
    KEEPALIVE_TIMEOUT = "keepalive_timeout"
    LINK_ERROR = "link_error"


@dataclass
class SessionStats:
    packets: int = 0
    events: int = 0
    malformed_packets: int = 0
    dropped_events: int = 0
    clamped_notes: int = 0
    keepalives: int = 0

    def to_dict(self) -> Dict[str, int]:
        return dict(self.__dict__)


@dataclass(frozen=True)
class SessionEnded:
    """Delivered to the supervisor when a session is over."""

    reason: SessionEndReason
    detail: str = ""
    stats: SessionStats = field(default_factory=SessionStats)
    duration_sec: float = 0.0


class DeviceSession:
    """Owns one connected link until it fails.

    Notifications are queued by the link callback and drained by a single
    pump task, so packets are decoded and delivered strictly in arrival
    order. Keepalive and status-check tasks run beside the pump; whichever
    notices a failure first resolves the one-shot end future.
    """

    def __init__(self, link: Any, config: AppConfig, sink: Any, event_log: Any = None) -> None:
        self.link = link
        self.config = config
        self.sink = sink
        self.event_log = event_log or NullEventLog()

        self.context = DecoderContext()
        self.stats = SessionStats()

        self._queue: Optional[asyncio.Queue] = None
        self._ended: Optional[asyncio.Future] = None
        self._tasks: List[asyncio.Task] = []
        self._started_at = 0.0

    @property
    def device_name(self) -> str:
        handle = getattr(self.link, "handle", None)
        return getattr(handle, "name", "unknown")

    async def run(self) -> SessionEnded:
        """Run until the link fails; always tears down before returning."""
        loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._ended = loop.create_future()
        self._started_at = time.monotonic()
        # every connection decodes from a clean context
        self.context.reset()
        self.stats = SessionStats()

        self.link.set_disconnect_callback(self._on_remote_disconnect)

        try:
            try:
                await self.link.start_notify(self._on_notification)
            except Exception as e:
                self._end(SessionEndReason.LINK_ERROR, f"subscribe failed: {e}")
            else:
                self.event_log.status("Session started", device=self.device_name)
                self._tasks = [
                    loop.create_task(self._pump_loop()),
                    loop.create_task(self._keepalive_loop()),
                    loop.create_task(self._status_loop()),
                ]
                for task in self._tasks:
                    task.add_done_callback(self._on_task_done)
            reason, detail = await self._ended
        finally:
            await self._teardown()

        ended = SessionEnded(
            reason=reason,
            detail=detail,
            stats=self.stats,
            duration_sec=round(time.monotonic() - self._started_at, 3),
        )
        logger.info("Session ended: %s %s", reason.value, detail)
        self.event_log.status("Session ended", device=self.device_name, data={
            "reason": reason.value,
            "detail": detail,
            "duration_sec": ended.duration_sec,
            "stats": self.stats.to_dict(),
        })
        return ended

    def handle_packet(self, packet: bytes) -> List[MidiEvent]:
        """Decode, transform and deliver one notification; returns what was sent."""
        self.stats.packets += 1
        try:
            events = decode_packet(packet, self.context)
        except MalformedPacketError as e:
            self.stats.malformed_packets += 1
            logger.warning("Dropping malformed BLE-MIDI packet: %s", e)
            self.event_log.error("malformed_packet", device=self.device_name, data={
                "hex": packet.hex(),
                "error": str(e),
            })
            return []

        offset = self.config.bridge.octave_offset
        delivered = []
        for event in events:
            if was_clamped(event, offset):
                self.stats.clamped_notes += 1
            out = apply_octave_offset(event, offset)
            try:
                self.sink.send(out)
            except SinkError as e:
                self.stats.dropped_events += 1
                logger.error("Dropping MIDI event %s: %s", out, e)
                continue
            self.stats.events += 1
            delivered.append(out)
            logger.debug("%s", out)
            if out.kind in NOTE_MESSAGES:
                self.event_log.debug("midi", device=self.device_name, data=out.to_dict())
        return delivered

    def _on_notification(self, data: bytes) -> None:
        if self._queue is not None:
            self._queue.put_nowait(bytes(data))

    def _on_remote_disconnect(self) -> None:
        self._end(SessionEndReason.REMOTE_DISCONNECTED, "link reported disconnect")

    def _end(self, reason: SessionEndReason, detail: str = "") -> None:
        if self._ended is not None and not self._ended.done():
            self._ended.set_result((reason, detail))

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled() or task.exception() is None:
            return
        error = task.exception()
        logger.error("Session task crashed: %r", error)
        self._end(SessionEndReason.LINK_ERROR, f"{type(error).__name__}: {error}")

    async def _pump_loop(self) -> None:
        while True:
            packet = await self._queue.get()
            logger.debug("Received BLE-MIDI packet: %s", packet.hex())
            self.handle_packet(packet)

    async def _keepalive_loop(self) -> None:
        interval = self.config.ble.keepalive_sec
        max_failures = self.config.ble.keepalive_max_failures
        failures = 0

        while True:
            await asyncio.sleep(interval)
            packet = self._keepalive_packet()
            try:
                await asyncio.wait_for(self.link.write(packet), timeout=interval)
            except Exception as e:
                failures += 1
                logger.warning("Keep-alive write failed (%d/%d): %s", failures, max_failures, e)
                if failures >= max_failures:
                    self._end(
                        SessionEndReason.KEEPALIVE_TIMEOUT,
                        f"{failures} consecutive keep-alive writes failed",
                    )
                    return
            else:
                failures = 0
                self.stats.keepalives += 1
                logger.debug("Keep-alive ping successful")

    async def _status_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.ble.status_check_sec)
            try:
                connected = self.link.is_connected
            except Exception as e:
                self._end(SessionEndReason.LINK_ERROR, f"status check failed: {e}")
                return
            if not connected:
                logger.error("Device disconnected unexpectedly")
                self._end(SessionEndReason.REMOTE_DISCONNECTED, "status check reported disconnected")
                return

    def _keepalive_packet(self) -> bytes:
        now_ms = int((time.monotonic() - self._started_at) * 1000)
        return encode_packet([MidiEvent(now_ms, ACTIVE_SENSING)])

    async def _teardown(self) -> None:
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        self.link.set_disconnect_callback(None)
        self._queue = None
        try:
            await self.link.stop_notify()
        except Exception as e:
            logger.warning("Error while releasing subscription: %s", e)
        try:
            await self.link.disconnect()
        except Exception as e:
            logger.warning("Error during disconnect: %s", e)
