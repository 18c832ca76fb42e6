"""BLE-MIDI Bridge - AKAI LPK25 Wireless to a virtual MIDI port."""

__version__ = "1.0.0"

from .bridge import ConnectionSupervisor, LinkState, run_bridge
from .config import AppConfig, load_config
from .midi import MidiEvent

__all__ = ["ConnectionSupervisor", "LinkState", "run_bridge", "AppConfig", "load_config", "MidiEvent"]
