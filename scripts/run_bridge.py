#!/usr/bin/env python3
"""Run the BLE-MIDI bridge from a source checkout."""

import sys
from pathlib import Path

# Add src to path for development
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from ble_midi_bridge.cli import main


if __name__ == "__main__":
    sys.exit(main())
