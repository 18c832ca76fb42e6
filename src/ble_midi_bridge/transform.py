"""Octave transposition applied to decoded events before they leave the bridge."""

from __future__ import annotations

import logging

from .midi import NOTE_MESSAGES, MidiEvent, note_name

logger = logging.getLogger(__name__)

MIN_OCTAVE_OFFSET = -11
MAX_OCTAVE_OFFSET = 11


def transpose_note(note: int, octave_offset: int) -> int:
    """Shift `note` by whole octaves, clamped to the MIDI range."""
    return max(0, min(127, note + 12 * octave_offset))


def apply_octave_offset(event: MidiEvent, octave_offset: int) -> MidiEvent:
    """Transpose note-off, note-on and polyphonic pressure events.

    Notes pushed outside 0-127 are clamped, not wrapped. Every other message
    kind, and an offset of 0, passes through untouched.
    """
    if octave_offset == 0 or event.kind not in NOTE_MESSAGES or not event.data:
        return event

    original = event.data[0]
    shifted = original + 12 * octave_offset
    note = transpose_note(original, octave_offset)

    if note != shifted:
        logger.warning(
            "Note %s (%d) clamped to %s (%d) at octave offset %+d",
            note_name(original), original, note_name(note), note, octave_offset,
        )
    else:
        logger.debug(
            "Note transposition: %s (%d) -> %s (%d) [offset: %+d octaves]",
            note_name(original), original, note_name(note), note, octave_offset,
        )

    return event.replace_data(bytes((note,)) + event.data[1:])


def was_clamped(event: MidiEvent, octave_offset: int) -> bool:
    """True when transposing `event` loses information."""
    if octave_offset == 0 or event.kind not in NOTE_MESSAGES or not event.data:
        return False
    shifted = event.data[0] + 12 * octave_offset
    return not 0 <= shifted <= 127
