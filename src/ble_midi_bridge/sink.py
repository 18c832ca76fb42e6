"""Virtual MIDI port output through mido."""

from __future__ import annotations

import logging
from typing import Any, List, Optional

import mido

from .midi import MidiEvent

logger = logging.getLogger(__name__)

LOOPMIDI_URL = "https://www.tobias-erichsen.de/software/loopmidi.html"


class SinkError(Exception):
    """Base class for output port failures."""


class SinkUnavailable(SinkError):
    """The named output port could not be opened."""


class SinkWriteError(SinkError):
    """A single message could not be written to the port."""


def list_output_ports() -> List[str]:
    """Names of the MIDI outputs the backend can see."""
    return list(mido.get_output_names())


class MidoSink:
    """Sends translated events to a named virtual MIDI port.

    The port is matched by substring, the same way loopMIDI port names show
    up with an index suffix on some backends.
    """

    def __init__(self, port_name: str) -> None:
        self.port_name = port_name
        self._port: Optional[Any] = None
        self._sent = 0

    @property
    def is_open(self) -> bool:
        return self._port is not None

    @property
    def sent_count(self) -> int:
        return self._sent

    def open(self) -> None:
        """Open the output port; raises SinkUnavailable on any failure."""
        if self._port is not None:
            return

        try:
            names = list_output_ports()
        except Exception as e:
            raise SinkUnavailable(f"Cannot list MIDI output ports: {e}") from e

        logger.info("Available MIDI output devices:")
        for idx, name in enumerate(names):
            logger.info("  %d: %s", idx, name)

        match = next((name for name in names if self.port_name in name), None)
        if match is None:
            self._log_setup_help()
            raise SinkUnavailable(f"MIDI port '{self.port_name}' not found")

        try:
            self._port = mido.open_output(match)
        except Exception as e:
            raise SinkUnavailable(f"Failed to open MIDI port '{match}': {e}") from e

        logger.info("Opened MIDI output device: %s", match)

    def send(self, event: MidiEvent) -> None:
        """Write one event as plain MIDI bytes."""
        if self._port is None:
            raise SinkUnavailable(f"MIDI port '{self.port_name}' is not open")

        raw = event.to_bytes()
        try:
            message = mido.Message.from_bytes(list(raw))
            self._port.send(message)
        except Exception as e:
            raise SinkWriteError(f"Failed to send MIDI message {raw.hex()}: {e}") from e

        self._sent += 1
        logger.debug("Sent MIDI message: %s", raw.hex())

    def close(self) -> None:
        if self._port is None:
            return
        try:
            self._port.close()
        finally:
            self._port = None
        logger.info("Closed MIDI output device")

    def _log_setup_help(self) -> None:
        logger.error("Could not find MIDI port '%s'. Please create it in loopMIDI:", self.port_name)
        logger.error("1. Download and install loopMIDI from: %s", LOOPMIDI_URL)
        logger.error("2. Run loopMIDI")
        logger.error("3. Click the '+' button to create a new virtual port")
        logger.error("4. Double click the port name and rename it to: %s", self.port_name)
        logger.error("5. Run this program again")

    def __enter__(self) -> MidoSink:
        self.open()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
