"""CLI entry point for the BLE-MIDI bridge."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

import yaml

from . import __version__
from .bridge import run_bridge
from .config import load_config, validate_config, with_overrides
from .sink import list_output_ports

logger = logging.getLogger(__name__)

BANNER = r"""
    ██████╗ ██╗     ██╗██████╗
    ██╔══██╗██║     ██║██╔══██╗
    ██████╔╝██║     ██║██████╔╝
    ██╔══██╗██║     ██║██╔═══╝
    ██████╔╝███████╗██║██║
    ╚═════╝ ╚══════╝╚═╝╚═╝

    BLE LPK25 INTERFACE PROGRAM  v{version}

    Bridges the AKAI LPK25 Wireless BLE-MIDI keyboard to a virtual MIDI port.
    Be sure the virtual port "{port}" exists before starting.
"""


def setup_logging(debug: bool = False) -> None:
    """Set up logging configuration."""
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    if not debug:
        logging.getLogger("bleak").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="BLE-MIDI bridge - AKAI LPK25 Wireless to a virtual MIDI port"
    )
    parser.add_argument("--config", help="Path to YAML configuration file")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--port", help="Override the virtual MIDI port name")
    parser.add_argument("--octave", type=int, help="Override the octave offset (-11 to 11)")
    parser.add_argument(
        "--list-ports",
        action="store_true",
        help="List available MIDI output ports and exit",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(args.debug)

    if args.list_ports:
        try:
            for name in list_output_ports():
                print(name)
        except Exception as e:
            print(f"Error: cannot list MIDI ports: {e}", file=sys.stderr)
            return 1
        return 0

    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    config = with_overrides(config, virtual_port_name=args.port, octave_offset=args.octave)

    errors = validate_config(config)
    if errors:
        logger.error("Configuration validation failed:")
        for error in errors:
            logger.error("  - %s", error)
        return 2

    print(BANNER.format(version=__version__, port=config.bridge.virtual_port_name))
    logger.info("Starting BLE-MIDI Bridge for AKAI LPK25")
    if args.debug:
        logger.info("Running in debug mode - detailed logging enabled")
    logger.info("Press Ctrl+C to exit")

    try:
        code, fatal = asyncio.run(run_bridge(config))
    except KeyboardInterrupt:
        print("\nBridge stopped by user")
        return 0

    if fatal:
        print(f"Bridge failed: {fatal}", file=sys.stderr)
    return code


if __name__ == "__main__":
    sys.exit(main())
