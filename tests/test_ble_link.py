import asyncio

import pytest

from ble_midi_bridge.ble import midi_device
from ble_midi_bridge.ble.midi_device import BleMidiLink, LinkError, connect_link
from ble_midi_bridge.ble.scanner import DeviceHandle, is_adapter_missing, matches_target
from ble_midi_bridge.config import BLE_MIDI_CHARACTERISTIC_UUID, BLE_MIDI_SERVICE_UUID, BleConfig


class FakeCharacteristic:
    def __init__(self, uuid):
        self.uuid = uuid
        self.properties = ["read", "write-without-response", "notify"]


class FakeService:
    def __init__(self, uuid, characteristics):
        self.uuid = uuid
        self.characteristics = characteristics

    def get_characteristic(self, uuid):
        return next((c for c in self.characteristics if c.uuid == uuid), None)


class FakeServices(list):
    def get_service(self, uuid):
        return next((s for s in self if s.uuid == uuid), None)


class FakeBleakClient:
    services_to_offer = None
    instances = []

    def __init__(self, target, adapter=None, timeout=None, disconnected_callback=None):
        self.target = target
        self.adapter = adapter
        self.disconnected_callback = disconnected_callback
        self.is_connected = False
        self.notify_handler = None
        self.written = []
        self.services = self.services_to_offer
        FakeBleakClient.instances.append(self)

    async def connect(self):
        self.is_connected = True

    async def disconnect(self):
        self.is_connected = False

    async def start_notify(self, characteristic, handler):
        self.notify_handler = handler

    async def stop_notify(self, characteristic):
        self.notify_handler = None

    async def write_gatt_char(self, characteristic, data, response=True):
        self.written.append((characteristic.uuid, bytes(data), response))


@pytest.fixture
def bleak_client(monkeypatch):
    FakeBleakClient.instances = []
    FakeBleakClient.services_to_offer = FakeServices([
        FakeService(BLE_MIDI_SERVICE_UUID, [FakeCharacteristic(BLE_MIDI_CHARACTERISTIC_UUID)]),
    ])
    monkeypatch.setattr(midi_device, "BleakClient", FakeBleakClient)
    return FakeBleakClient


HANDLE = DeviceHandle("AA:BB:CC:DD:EE:FF", "LPK25 Wireless")


def test_connect_notify_and_write(bleak_client):
    received = []

    async def scenario():
        link = await connect_link(HANDLE, BleConfig())
        await link.start_notify(received.append)
        client = bleak_client.instances[0]
        client.notify_handler(None, bytearray([0x80, 0x80, 0x90, 0x40, 0x7F]))
        await link.write(b"\x80\x80\xfe")
        return link, client

    link, client = asyncio.run(scenario())

    assert client.adapter == "hci0"
    assert client.target == HANDLE.address
    assert received == [bytes([0x80, 0x80, 0x90, 0x40, 0x7F])]
    assert client.written == [(BLE_MIDI_CHARACTERISTIC_UUID, b"\x80\x80\xfe", False)]
    assert link.is_connected


def test_missing_service_is_link_error(bleak_client):
    bleak_client.services_to_offer = FakeServices([])
    with pytest.raises(LinkError):
        asyncio.run(connect_link(HANDLE, BleConfig()))
    assert not bleak_client.instances[0].is_connected


def test_remote_disconnect_reported_but_not_requested_one(bleak_client):
    calls = []

    async def scenario():
        link = BleMidiLink(HANDLE, BleConfig())
        await link.connect()
        link.set_disconnect_callback(lambda: calls.append("remote"))
        client = bleak_client.instances[0]
        client.disconnected_callback(client)
        await link.disconnect()
        client.disconnected_callback(client)
        return link

    link = asyncio.run(scenario())
    assert calls == ["remote"]
    assert not link.is_connected


def test_write_without_connection():
    with pytest.raises(LinkError):
        asyncio.run(BleMidiLink(HANDLE, BleConfig()).write(b"\x80\x80\xfe"))


@pytest.mark.parametrize("name, uuids, expected", [
    ("LPK25 Wireless", [], True),
    ("AKAI MPK", [], True),
    ("Speaker", [BLE_MIDI_SERVICE_UUID.upper()], True),
    ("Speaker", [], False),
    (None, [], False),
])
def test_matches_target(name, uuids, expected):
    assert matches_target(name, uuids, BLE_MIDI_SERVICE_UUID, ("LPK25", "AKAI")) is expected


def test_adapter_missing_detection():
    assert is_adapter_missing(FileNotFoundError("no dbus socket"))
    assert is_adapter_missing(OSError("Bluetooth adapter hci0 not found"))
    assert not is_adapter_missing(OSError("connection reset"))
