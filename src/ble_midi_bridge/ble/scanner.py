"""Discovery of BLE-MIDI keyboards from advertisements."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Set

from bleak import BleakScanner
from bleak.exc import BleakError

from ..config import BleConfig

logger = logging.getLogger(__name__)

_ADAPTER_MISSING_HINTS = (
    "no bluetooth adapters",
    "bluetooth adapter",
    "not available",
    "turned off",
    "powered off",
)


class AdapterUnavailable(RuntimeError):
    """No usable Bluetooth adapter on this host."""


@dataclass(frozen=True)
class DeviceHandle:
    """A discovered peripheral; immutable once produced by a scan."""

    address: str
    name: str
    rssi: Optional[int] = None
    device: Any = field(default=None, compare=False, repr=False)


def matches_target(
    name: Optional[str],
    service_uuids: Iterable[str],
    service_uuid: str,
    name_patterns: Iterable[str],
) -> bool:
    """True when an advertisement belongs to the target keyboard."""
    wanted = service_uuid.lower()
    if any(u.lower() == wanted for u in service_uuids or ()):
        return True
    if name:
        return any(pattern in name for pattern in name_patterns)
    return False


def is_adapter_missing(error: BaseException) -> bool:
    if isinstance(error, FileNotFoundError):
        # No BlueZ / D-Bus socket on this host
        return True
    text = str(error).lower()
    return any(hint in text for hint in _ADAPTER_MISSING_HINTS)


async def discover_device(config: BleConfig) -> Optional[DeviceHandle]:
    """Scan up to `scan_timeout_sec` and return the first matching device.

    Returns None when nothing matched in time. Raises AdapterUnavailable when
    the host has no usable Bluetooth adapter.
    """
    loop = asyncio.get_running_loop()
    found: asyncio.Future = loop.create_future()
    seen: Set[str] = set()

    def on_advertisement(device: Any, adv: Any) -> None:
        if found.done():
            return
        name = device.name or adv.local_name
        if name and device.address not in seen:
            seen.add(device.address)
            logger.info("Found device: %s", name)
        if matches_target(name, adv.service_uuids, config.service_uuid, config.name_patterns):
            handle = DeviceHandle(
                address=device.address,
                name=name or device.address,
                rssi=adv.rssi,
                device=device,
            )
            logger.info("Found target device: %s (rssi=%s)", handle.name, handle.rssi)
            found.set_result(handle)

    logger.info("Scanning for BLE devices...")
    try:
        async with BleakScanner(detection_callback=on_advertisement, adapter=config.adapter):
            return await asyncio.wait_for(found, timeout=config.scan_timeout_sec)
    except asyncio.TimeoutError:
        logger.info("No target device found within %d seconds", config.scan_timeout_sec)
        return None
    except (BleakError, OSError) as e:
        if is_adapter_missing(e):
            raise AdapterUnavailable(str(e)) from e
        raise
