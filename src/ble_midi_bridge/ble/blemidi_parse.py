"""Parser for BLE-MIDI notification packets.

Packet structure (Bluetooth LE MIDI 1.0):
- byte[0]: header, bit 7 set, bits 5-0 = timestamp high (6 bits)
- then one or more messages, each optionally preceded by a timestamp byte
  (bit 7 set, bits 6-0 = timestamp low)
- a message starts with a status byte, or with a data byte when running
  status applies; a data byte at a message boundary also reuses the previous
  timestamp
- SysEx is framed as `ts F0 data... ts F7` and may continue over several
  packets; continuation packets are a header followed by data bytes

The timestamp is a 13-bit millisecond clock `(high << 7) | low`. When the low
part goes backwards the high part has advanced (the device only sends it
once per packet), and when the 13-bit value itself goes backwards the clock
wrapped; `DecoderContext.epoch` counts those wraps so event timestamps stay
monotonic for the whole connection.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ..midi import (
    SYSEX_END,
    SYSEX_START,
    MidiEvent,
    data_length,
    is_realtime,
    is_status,
)

logger = logging.getLogger(__name__)

TIMESTAMP_MODULO = 1 << 13


class MalformedPacketError(ValueError):
    """Raised when a BLE-MIDI packet cannot be decoded."""


@dataclass
class DecoderContext:
    """Running decoder state for one connection."""

    running_status: Optional[int] = None
    last_timestamp: Optional[int] = None  # 13-bit wire clock
    epoch: int = 0
    sysex: Optional[bytearray] = None

    @property
    def clock(self) -> int:
        """Session clock in ms for the last timestamp seen."""
        return self.epoch * TIMESTAMP_MODULO + (self.last_timestamp or 0)

    def copy(self) -> DecoderContext:
        return DecoderContext(
            running_status=self.running_status,
            last_timestamp=self.last_timestamp,
            epoch=self.epoch,
            sysex=bytearray(self.sysex) if self.sysex is not None else None,
        )

    def update_from(self, other: DecoderContext) -> None:
        self.running_status = other.running_status
        self.last_timestamp = other.last_timestamp
        self.epoch = other.epoch
        self.sysex = other.sysex

    def reset(self) -> None:
        self.update_from(DecoderContext())


class _PacketDecoder:
    """Single pass over one packet, working on a scratch copy of the context."""

    def __init__(self, packet: bytes, state: DecoderContext) -> None:
        self.packet = packet
        self.state = state
        self.pos = 1
        self.high = packet[0] & 0x3F
        self.events: List[MidiEvent] = []

    def _fail(self, reason: str) -> None:
        raise MalformedPacketError(f"{reason} at offset {self.pos} in {self.packet.hex()}")

    def _apply_timestamp(self, low: int) -> None:
        state = self.state
        last = state.last_timestamp
        if last is not None and last >> 7 == self.high and low < last & 0x7F:
            # low overflowed since the last timestamp
            self.high = (self.high + 1) & 0x3F
        value = (self.high << 7) | low
        if last is not None and value < last:
            state.epoch += 1
        state.last_timestamp = value

    def _ensure_timestamp(self) -> None:
        if self.state.last_timestamp is None:
            self.state.last_timestamp = self.high << 7

    def _emit(self, status: int, data: bytes = b"") -> None:
        self.events.append(MidiEvent(self.state.clock, status, bytes(data)))

    def _collect_sysex(self) -> None:
        start = self.pos
        while self.pos < len(self.packet) and not is_status(self.packet[self.pos]):
            self.pos += 1
        self.state.sysex.extend(self.packet[start:self.pos])

    def run(self) -> List[MidiEvent]:
        packet = self.packet
        state = self.state

        while self.pos < len(packet):
            if state.sysex is not None and not is_status(packet[self.pos]):
                self._collect_sysex()
                continue

            byte = packet[self.pos]
            if is_status(byte):
                self._apply_timestamp(byte & 0x7F)
                self.pos += 1
                if self.pos >= len(packet):
                    self._fail("timestamp byte without a message")
                byte = packet[self.pos]
                if state.sysex is not None and not is_status(byte):
                    self._fail("data byte after timestamp inside SysEx")
            else:
                self._ensure_timestamp()

            if is_status(byte):
                status = byte
                self.pos += 1
                if self._handle_system(status):
                    continue
            else:
                if state.running_status is None:
                    self._fail("running status continuation with no prior status")
                status = state.running_status

            self._read_message(status)

        return self.events

    def _handle_system(self, status: int) -> bool:
        """Deal with SysEx framing and real-time bytes; True when consumed."""
        state = self.state

        if state.sysex is not None:
            if status == SYSEX_END:
                self._emit(SYSEX_START, bytes(state.sysex))
                state.sysex = None
                return True
            if is_realtime(status):
                self._emit(status)
                return True
            logger.debug(
                "SysEx interrupted by status 0x%02X, discarding %d bytes",
                status, len(state.sysex),
            )
            state.sysex = None

        if status == SYSEX_START:
            state.sysex = bytearray()
            state.running_status = None
            return True
        if status == SYSEX_END:
            self._fail("end of SysEx without a start")
        if is_realtime(status):
            # real-time messages do not touch running status
            self._emit(status)
            return True

        if status >= 0xF0:
            state.running_status = None
        else:
            state.running_status = status
        return False

    def _read_message(self, status: int) -> None:
        length = data_length(status)
        end = self.pos + length
        if end > len(self.packet):
            self._fail(f"message 0x{status:02X} needs {length} data bytes")
        data = self.packet[self.pos:end]
        for b in data:
            if is_status(b):
                self._fail(f"status byte 0x{b:02X} where a data byte was expected")
        self.pos = end
        self._emit(status, data)


def decode_packet(packet: bytes, ctx: DecoderContext) -> List[MidiEvent]:
    """Decode one BLE-MIDI notification into MIDI events.

    `ctx` is only updated when the whole packet decodes; on
    MalformedPacketError it is left exactly as it was.
    """
    if not packet:
        raise MalformedPacketError("empty packet")
    if not is_status(packet[0]):
        raise MalformedPacketError(f"header byte 0x{packet[0]:02X} lacks bit 7")

    scratch = ctx.copy()
    events = _PacketDecoder(bytes(packet), scratch).run()
    ctx.update_from(scratch)
    return events


def encode_packet(events: Sequence[MidiEvent], running_status: bool = True) -> bytes:
    """Build a BLE-MIDI packet carrying `events`.

    The header carries the high part of the first event's timestamp, so all
    events should fall within the same 128 ms window (one low overflow is
    recovered by the decoder).
    """
    if not events:
        raise ValueError("at least one event is required")

    first = events[0].wire_timestamp
    out = bytearray((0x80 | ((first >> 7) & 0x3F),))
    last_status: Optional[int] = None

    for event in events:
        ts_byte = 0x80 | (event.wire_timestamp & 0x7F)
        if event.is_sysex:
            out += bytes((ts_byte, SYSEX_START)) + event.data + bytes((ts_byte, SYSEX_END))
            last_status = None
            continue

        out.append(ts_byte)
        if not (running_status and event.status == last_status):
            out.append(event.status)
        out += event.data

        if event.status < 0xF0:
            last_status = event.status
        elif not is_realtime(event.status):
            last_status = None

    return bytes(out)
