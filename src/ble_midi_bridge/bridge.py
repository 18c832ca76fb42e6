"""Connection supervisor that keeps the keyboard bridged to the MIDI port."""

from __future__ import annotations

import asyncio
import functools
import logging
import signal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Optional, Tuple

from .ble.midi_device import connect_link
from .ble.scanner import AdapterUnavailable, DeviceHandle, discover_device
from .config import AppConfig
from .logs import NullEventLog, create_event_log
from .session import DeviceSession, SessionEnded
from .sink import MidoSink, SinkUnavailable

logger = logging.getLogger(__name__)


class LinkState(Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


TRANSITIONS: Dict[LinkState, FrozenSet[LinkState]] = {
    LinkState.IDLE: frozenset({LinkState.SCANNING, LinkState.FAILED}),
    LinkState.SCANNING: frozenset({LinkState.SCANNING, LinkState.CONNECTING, LinkState.FAILED}),
    LinkState.CONNECTING: frozenset({LinkState.CONNECTED, LinkState.RECONNECTING, LinkState.FAILED}),
    LinkState.CONNECTED: frozenset({LinkState.RECONNECTING, LinkState.FAILED}),
    LinkState.RECONNECTING: frozenset({LinkState.SCANNING, LinkState.FAILED}),
    LinkState.FAILED: frozenset(),
}

Scanner = Callable[[], Awaitable[Optional[DeviceHandle]]]
Connector = Callable[[DeviceHandle], Awaitable[Any]]


class ConnectionSupervisor:
    """Drives scan -> connect -> session -> reconnect forever.

    Only this class changes `state`. Transient failures always lead back to
    scanning after a fixed `reconnect_backoff_sec` pause; only a missing
    output port or Bluetooth adapter ends in FAILED.
    """

    def __init__(
        self,
        config: AppConfig,
        sink: Any,
        scanner: Scanner,
        connector: Connector,
        session_factory: Callable[..., Any] = DeviceSession,
        event_log: Any = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.sink = sink
        self._scanner = scanner
        self._connector = connector
        self._session_factory = session_factory
        self.event_log = event_log or NullEventLog()
        self._sleep = sleep

        self.state = LinkState.IDLE
        self.history: List[Tuple[LinkState, LinkState]] = []
        self.fatal_error: Optional[str] = None
        self.last_end: Optional[SessionEnded] = None
        self.sessions_started = 0

        self._handle: Optional[DeviceHandle] = None
        self._link: Optional[Any] = None
        self._step: Optional[asyncio.Future] = None
        self._stop_requested = False

    async def run(self) -> int:
        """Run until stopped (returns 0) or a fatal error (returns 1)."""
        self._stop_requested = False
        try:
            self.sink.open()
        except SinkUnavailable as e:
            self._record_fatal(str(e))
            self._transition(LinkState.FAILED)
            return 1

        handlers = {
            LinkState.SCANNING: self._scan,
            LinkState.CONNECTING: self._connect,
            LinkState.CONNECTED: self._run_session,
            LinkState.RECONNECTING: self._reconnect,
        }

        try:
            self._transition(LinkState.SCANNING)
            while not self._stop_requested and self.state is not LinkState.FAILED:
                next_state = await self._run_step(handlers[self.state])
                if self._stop_requested or next_state is None:
                    break
                self._transition(next_state)
        finally:
            if self._link is not None:
                await self._release_link()
            self.sink.close()

        if self.state is LinkState.FAILED:
            return 1
        logger.info("Bridge stopped")
        self.event_log.status("Bridge stopped", data={"state": self.state.value})
        return 0

    def stop(self) -> None:
        """Request shutdown; an in-flight scan, connect or session is cancelled."""
        self._stop_requested = True
        if self._step is not None and not self._step.done():
            self._step.cancel()

    async def _run_step(self, handler: Callable[[], Awaitable[LinkState]]) -> Optional[LinkState]:
        self._step = asyncio.ensure_future(handler())
        try:
            return await self._step
        except asyncio.CancelledError:
            if self._stop_requested:
                return None
            raise
        finally:
            self._step = None

    async def _release_link(self) -> None:
        link, self._link = self._link, None
        self._handle = None
        try:
            await link.disconnect()
        except Exception as e:
            logger.warning("Error while disconnecting on shutdown: %s", e)

    def _transition(self, new_state: LinkState) -> None:
        old_state = self.state
        if new_state not in TRANSITIONS[old_state]:
            raise RuntimeError(f"Illegal link state transition {old_state.value} -> {new_state.value}")

        self.state = new_state
        self.history.append((old_state, new_state))
        if old_state is not new_state:
            logger.info("Link state: %s -> %s", old_state.value, new_state.value)
        self.event_log.status("Link state", data={"from": old_state.value, "to": new_state.value})

    def _record_fatal(self, reason: str) -> None:
        self.fatal_error = reason
        logger.error("Fatal: %s", reason)
        self.event_log.error("Fatal error", data={"error": reason})

    async def _scan(self) -> LinkState:
        try:
            handle = await self._scanner()
        except AdapterUnavailable as e:
            self._record_fatal(f"No usable Bluetooth adapter: {e}")
            return LinkState.FAILED
        except Exception as e:
            logger.warning("Scan failed: %s", e)
            self.event_log.error("Scan failed", data={"error": str(e), "type": type(e).__name__})
            await self._sleep(self.config.ble.reconnect_backoff_sec)
            return LinkState.SCANNING

        if handle is None:
            logger.info("Scan timed out, scanning again")
            return LinkState.SCANNING

        self._handle = handle
        self.event_log.status("Device found", device=handle.name, data={
            "address": handle.address,
            "rssi": handle.rssi,
        })
        return LinkState.CONNECTING

    async def _connect(self) -> LinkState:
        handle = self._handle
        try:
            self._link = await self._connector(handle)
        except Exception as e:
            logger.warning("Connection to %s failed: %s", handle.name, e)
            self.event_log.error("Connect failed", device=handle.name, data={
                "error": str(e),
                "type": type(e).__name__,
            })
            return LinkState.RECONNECTING

        self.event_log.status("Connected", device=handle.name, data={"address": handle.address})
        return LinkState.CONNECTED

    async def _run_session(self) -> LinkState:
        session = self._session_factory(self._link, self.config, self.sink, self.event_log)
        self.sessions_started += 1
        try:
            self.last_end = await session.run()
        except Exception as e:
            logger.error("Session crashed: %s", e)
            self.event_log.error("Session crashed", data={"error": str(e), "type": type(e).__name__})
            return LinkState.RECONNECTING
        finally:
            self._link = None
            self._handle = None

        logger.warning(
            "Session with device ended (%s): %s",
            self.last_end.reason.value, self.last_end.detail,
        )
        return LinkState.RECONNECTING

    async def _reconnect(self) -> LinkState:
        backoff = self.config.ble.reconnect_backoff_sec
        logger.info("Reconnecting in %.1f seconds", backoff)
        await self._sleep(backoff)
        return LinkState.SCANNING


def build_supervisor(config: AppConfig, event_log: Any = None) -> ConnectionSupervisor:
    """Wire the real Bleak and mido collaborators into a supervisor."""
    return ConnectionSupervisor(
        config,
        sink=MidoSink(config.bridge.virtual_port_name),
        scanner=functools.partial(discover_device, config.ble),
        connector=functools.partial(connect_link, config=config.ble),
        session_factory=DeviceSession,
        event_log=event_log,
    )


async def run_bridge(config: AppConfig) -> Tuple[int, Optional[str]]:
    """Run the bridge until cancelled or a fatal error.

    Returns the exit code and, for a fatal error, its one-line cause.
    """
    event_log = create_event_log(config.logging)
    supervisor = build_supervisor(config, event_log)

    event_log.status("Bridge starting", data={
        "port": config.bridge.virtual_port_name,
        "octave_offset": config.bridge.octave_offset,
        "scan_timeout_sec": config.ble.scan_timeout_sec,
        "keepalive_sec": config.ble.keepalive_sec,
        "status_check_sec": config.ble.status_check_sec,
    })

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, supervisor.stop)
        except (NotImplementedError, RuntimeError):
            # Windows event loops: Ctrl+C arrives as KeyboardInterrupt instead
            pass

    try:
        code = await supervisor.run()
    finally:
        event_log.close()
    return code, supervisor.fatal_error
