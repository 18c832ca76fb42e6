"""BLE package: BLE-MIDI packet codec, discovery and the peripheral link."""

from .blemidi_parse import DecoderContext, MalformedPacketError, decode_packet, encode_packet
from .midi_device import BleMidiLink, LinkError
from .scanner import AdapterUnavailable, DeviceHandle

__all__ = [
    "DecoderContext",
    "MalformedPacketError",
    "decode_packet",
    "encode_packet",
    "BleMidiLink",
    "LinkError",
    "AdapterUnavailable",
    "DeviceHandle",
]
