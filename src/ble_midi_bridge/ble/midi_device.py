"""BLE-MIDI peripheral link built on Bleak."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

from bleak import BleakClient
from bleak.exc import BleakError

from ..config import BleConfig
from .scanner import DeviceHandle

logger = logging.getLogger(__name__)


class LinkError(RuntimeError):
    """The physical link failed or does not expose the BLE-MIDI characteristic."""


NotificationCallback = Callable[[bytes], None]


class BleMidiLink:
    """Connected BLE-MIDI characteristic of one peripheral."""

    def __init__(self, handle: DeviceHandle, config: BleConfig) -> None:
        self.handle = handle
        self.config = config

        self._client: Optional[BleakClient] = None
        self._characteristic: Optional[Any] = None
        self._notifying = False

        self._on_disconnect: Optional[Callable[[], None]] = None

    def set_disconnect_callback(self, callback: Optional[Callable[[], None]]) -> None:
        """Set callback for link-level disconnection events."""
        self._on_disconnect = callback

    @property
    def is_connected(self) -> bool:
        return self._client is not None and self._client.is_connected

    async def connect(self) -> None:
        """Connect, then resolve the BLE-MIDI service and characteristic."""
        target = self.handle.device if self.handle.device is not None else self.handle.address
        logger.info("Connecting to %s (%s)...", self.handle.name, self.handle.address)

        self._client = BleakClient(
            target,
            adapter=self.config.adapter,
            timeout=self.config.connect_timeout_sec,
            disconnected_callback=self._on_device_disconnect,
        )

        try:
            await self._client.connect()
        except (BleakError, asyncio.TimeoutError, OSError) as e:
            self._client = None
            raise LinkError(f"Connection to {self.handle.address} failed: {e}") from e

        logger.info("Connected successfully")
        self._log_services()

        service = self._client.services.get_service(self.config.service_uuid)
        if service is None:
            await self.disconnect()
            raise LinkError("BLE-MIDI service not found")

        characteristic = service.get_characteristic(self.config.characteristic_uuid)
        if characteristic is None:
            await self.disconnect()
            raise LinkError("BLE-MIDI characteristic not found")

        self._characteristic = characteristic
        logger.info("Found BLE-MIDI service: %s", service.uuid)
        logger.info("Found BLE-MIDI characteristic: %s", characteristic.uuid)

    async def start_notify(self, callback: NotificationCallback) -> None:
        """Subscribe to the characteristic; `callback` receives each value as bytes."""
        client = self._require_client()

        def _handle_notification(sender: Any, data: bytearray) -> None:
            callback(bytes(data))

        await client.start_notify(self._characteristic, _handle_notification)
        self._notifying = True
        logger.info("Subscribed to BLE-MIDI notifications")

    async def stop_notify(self) -> None:
        if not self._notifying:
            return
        self._notifying = False
        if self._client is None or not self._client.is_connected:
            return
        try:
            await self._client.stop_notify(self._characteristic)
        except (BleakError, OSError) as e:
            logger.warning("Error while unsubscribing: %s", e)

    async def write(self, data: bytes) -> None:
        """Write without response to the BLE-MIDI characteristic."""
        client = self._require_client()
        await client.write_gatt_char(self._characteristic, data, response=False)

    async def disconnect(self) -> None:
        client = self._client
        if client is None:
            return
        # Drop the callback first so a requested disconnect is not reported as remote
        self._on_disconnect = None
        try:
            if client.is_connected:
                await client.disconnect()
        except (BleakError, OSError) as e:
            logger.warning("Error during disconnect: %s", e)
        finally:
            self._client = None
            self._characteristic = None
            self._notifying = False
        logger.info("Disconnected from %s", self.handle.address)

    def _require_client(self) -> BleakClient:
        if self._client is None or self._characteristic is None:
            raise LinkError("Link is not connected")
        return self._client

    def _log_services(self) -> None:
        for service in self._client.services:
            logger.debug("Found service: %s", service.uuid)
            for characteristic in service.characteristics:
                logger.debug(
                    "  Characteristic: %s (properties: %s)",
                    characteristic.uuid, ", ".join(characteristic.properties),
                )

    def _on_device_disconnect(self, client: BleakClient) -> None:
        """Handle device disconnection callback from Bleak."""
        logger.warning("Device %s disconnected", self.handle.address)
        if self._on_disconnect:
            self._on_disconnect()


async def connect_link(handle: DeviceHandle, config: BleConfig) -> BleMidiLink:
    """Open a BleMidiLink to `handle`; raises LinkError on failure."""
    link = BleMidiLink(handle, config)
    await link.connect()
    return link
