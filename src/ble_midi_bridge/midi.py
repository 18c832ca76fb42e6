"""MIDI event model shared by the codec, the transform and the output sink."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

NOTE_OFF = 0x80
NOTE_ON = 0x90
POLY_PRESSURE = 0xA0
CONTROL_CHANGE = 0xB0
PROGRAM_CHANGE = 0xC0
CHANNEL_PRESSURE = 0xD0
PITCH_BEND = 0xE0

SYSEX_START = 0xF0
SYSEX_END = 0xF7
ACTIVE_SENSING = 0xFE

# Messages whose first data byte is a note number
NOTE_MESSAGES = frozenset((NOTE_OFF, NOTE_ON, POLY_PRESSURE))

_CHANNEL_DATA_LENGTHS: Dict[int, int] = {
    NOTE_OFF: 2,
    NOTE_ON: 2,
    POLY_PRESSURE: 2,
    CONTROL_CHANGE: 2,
    PROGRAM_CHANGE: 1,
    CHANNEL_PRESSURE: 1,
    PITCH_BEND: 2,
}

_SYSTEM_DATA_LENGTHS: Dict[int, int] = {
    0xF1: 1,  # MTC quarter frame
    0xF2: 2,  # song position
    0xF3: 1,  # song select
}

_MESSAGE_NAMES: Dict[int, str] = {
    NOTE_OFF: "Note Off",
    NOTE_ON: "Note On",
    POLY_PRESSURE: "Polyphonic Key Pressure",
    CONTROL_CHANGE: "Control Change",
    PROGRAM_CHANGE: "Program Change",
    CHANNEL_PRESSURE: "Channel Pressure",
    PITCH_BEND: "Pitch Bend",
}

_NOTE_NAMES = ("C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B")


def is_status(byte: int) -> bool:
    return byte & 0x80 != 0


def is_realtime(status: int) -> bool:
    """System real-time messages (clock, start, active sensing, ...)."""
    return status >= 0xF8


def data_length(status: int) -> int:
    """Number of data bytes that follow `status` in a short message."""
    if status < 0xF0:
        return _CHANNEL_DATA_LENGTHS[status & 0xF0]
    return _SYSTEM_DATA_LENGTHS.get(status, 0)


def note_name(note: int) -> str:
    """Scientific pitch name, MIDI note 60 is C4."""
    return f"{_NOTE_NAMES[note % 12]}{note // 12 - 1}"


@dataclass(frozen=True)
class MidiEvent:
    """A single decoded MIDI message.

    `timestamp` is the session clock in milliseconds reconstructed from the
    BLE-MIDI 13-bit timestamps; it never goes backwards within one session.
    For SysEx (`status == 0xF0`) `data` is the payload without the F0/F7
    framing, for every other message it holds the 0-2 data bytes.
    """

    timestamp: int
    status: int
    data: bytes = b""

    @property
    def kind(self) -> int:
        """High nibble for channel messages, the full status for system ones."""
        if self.status < 0xF0:
            return self.status & 0xF0
        return self.status

    @property
    def channel(self) -> Optional[int]:
        if self.status < 0xF0:
            return self.status & 0x0F
        return None

    @property
    def is_sysex(self) -> bool:
        return self.status == SYSEX_START

    @property
    def wire_timestamp(self) -> int:
        """The 13-bit timestamp as carried on the wire."""
        return self.timestamp & 0x1FFF

    def message_type(self) -> str:
        kind = self.kind
        if kind == NOTE_ON and len(self.data) == 2 and self.data[1] == 0:
            return "Note Off"
        if self.is_sysex:
            return "System Exclusive"
        if self.status == ACTIVE_SENSING:
            return "Active Sensing"
        return _MESSAGE_NAMES.get(kind, "Unknown")

    def note_name(self) -> str:
        """Note name for note messages, empty string otherwise."""
        if self.kind not in NOTE_MESSAGES or not self.data:
            return ""
        return note_name(self.data[0])

    def replace_data(self, data: bytes) -> MidiEvent:
        return MidiEvent(self.timestamp, self.status, bytes(data))

    def to_bytes(self) -> bytes:
        """Flat MIDI serialization, no BLE framing."""
        if self.is_sysex:
            return bytes((SYSEX_START,)) + self.data + bytes((SYSEX_END,))
        return bytes((self.status,)) + self.data

    def to_dict(self) -> dict:
        """Convert event to dictionary for logging."""
        record = {
            "ts": self.timestamp,
            "type": self.message_type(),
            "status": f"{self.status:02X}",
            "data": self.data.hex(),
        }
        if self.channel is not None:
            record["channel"] = self.channel
        name = self.note_name()
        if name:
            record["note"] = name
        return record

    def __str__(self) -> str:
        data = " ".join(f"{b:02X}" for b in self.data)
        name = self.note_name()
        label = f"{self.message_type()} {name}".rstrip()
        return f"{label} [status: {self.status:02X}, data: {data or '-'}] @{self.timestamp}ms"
