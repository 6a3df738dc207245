from __future__ import annotations

import asyncio
import enum
import logging
import sys
import threading
import types

import pytest

from gattsim.core import uuids as u
from gattsim.core.catalog import build_catalog
from gattsim.core.errors import TransportConnectError, TransportSendError, TransportTimeoutError
from gattsim.core.model import AttStatus, DeviceInfo
from gattsim.core.peripheral import Peripheral
from gattsim.core.service import attach_observer
from gattsim.transports.ble_gatt import BLEGATTCentral
from gattsim.transports.bless_host import AGGREGATE_PEER, BlessHostStack
from gattsim.transports.logging_host import LoggingHostStack

from conftest import FIXED_NOW, make_profile, wait_for

INFO = DeviceInfo(manufacturer="gattsim", model="GS-TEST", serial="0001", firmware="1.0.0")


class FakeGATTCharacteristicProperties(enum.IntFlag):
    read = 0x02
    write_without_response = 0x04
    write = 0x08
    notify = 0x10
    indicate = 0x20


class FakeGATTAttributePermissions(enum.IntFlag):
    readable = 0x01
    writeable = 0x02


class FakeBlessCharacteristic:
    def __init__(self, service_uuid: str, uuid: str, value) -> None:
        self.service_uuid = service_uuid
        self.uuid = uuid
        self.value = value


class FakeBlessService:
    def __init__(self, uuid: str) -> None:
        self.uuid = uuid
        self.characteristics: dict[str, FakeBlessCharacteristic] = {}

    def get_characteristic(self, uuid: str):
        return self.characteristics.get(uuid)


class FakeBlessServer:
    rejected_services: set[str] = set()

    def __init__(self, name: str, loop) -> None:
        self.name = name
        self.loop = loop
        self.services: list[str] = []
        self.gatt: dict[str, FakeBlessService] = {}
        self.properties: dict[str, int] = {}
        self.updates: list[tuple[str, str, bytes]] = []
        self.started = False
        self.stopped = False
        self.read_request_func = None
        self.write_request_func = None

    async def add_new_service(self, uuid: str) -> None:
        if uuid in self.rejected_services:
            raise RuntimeError("adapter refused service")
        self.services.append(uuid)
        self.gatt[uuid] = FakeBlessService(uuid)

    async def add_new_characteristic(self, service_uuid, uuid, properties, value, permissions) -> None:
        self.gatt[service_uuid].characteristics[uuid] = FakeBlessCharacteristic(service_uuid, uuid, value)
        self.properties[uuid] = properties

    def get_service(self, uuid: str):
        return self.gatt.get(uuid)

    def get_characteristic(self, uuid: str, service_uuid: str | None = None):
        for service in self.gatt.values():
            if service_uuid in (None, service.uuid) and uuid in service.characteristics:
                return service.characteristics[uuid]
        return None

    def update_value(self, service_uuid: str, uuid: str) -> bool:
        value = self.gatt[service_uuid].characteristics[uuid].value
        self.updates.append((service_uuid, uuid, bytes(value)))
        return True

    async def start(self) -> bool:
        self.started = True
        return True

    async def stop(self) -> bool:
        self.stopped = True
        return True


@pytest.fixture
def fake_bless(monkeypatch: pytest.MonkeyPatch):
    module = types.ModuleType("bless")
    module.BlessServer = FakeBlessServer
    module.GATTCharacteristicProperties = FakeGATTCharacteristicProperties
    module.GATTAttributePermissions = FakeGATTAttributePermissions
    monkeypatch.setitem(sys.modules, "bless", module)
    monkeypatch.setattr(FakeBlessServer, "rejected_services", set())
    return module


def _bless_peripheral() -> tuple[BlessHostStack, Peripheral]:
    host = BlessHostStack("Bench", timeout_s=2.0)
    peripheral = Peripheral(host, make_profile(), clock=lambda: FIXED_NOW)
    host.bind(peripheral)
    return host, peripheral


def _bless_threads() -> list[threading.Thread]:
    return [t for t in threading.enumerate() if t.name == "gattsim-bless" and t.is_alive()]


def test_bless_registers_every_service_in_order(fake_bless) -> None:
    host, peripheral = _bless_peripheral()
    assert peripheral.open_server()
    peripheral.register_all_services()
    assert wait_for(lambda: peripheral.registration_settled)

    server = peripheral.handle
    assert server.name == "Bench"
    assert server.services == [s.uuid for s in peripheral.catalog.services()]
    assert peripheral.failed_services == []

    battery = server.get_characteristic(u.BATTERY_LEVEL)
    assert bytes(battery.value) == b"\x50"
    props = server.properties[u.BATTERY_LEVEL]
    assert props == FakeGATTCharacteristicProperties.read | FakeGATTCharacteristicProperties.notify
    # Characteristics without an initial value are registered empty.
    assert server.get_characteristic(u.SCALE_NOTIFY).value is None

    host.advertise(server)
    assert server.started
    peripheral.close()
    assert server.stopped
    assert not _bless_threads()


def test_bless_rejected_service_is_reported(fake_bless) -> None:
    FakeBlessServer.rejected_services.add(u.HEART_RATE_SERVICE)
    _, peripheral = _bless_peripheral()
    peripheral.open_server()
    peripheral.register_all_services()
    assert wait_for(lambda: peripheral.registration_settled)

    assert peripheral.failed_services == [u.HEART_RATE_SERVICE]
    assert peripheral.handle.services == [u.BATTERY_SERVICE]
    peripheral.close()


def test_bless_read_goes_through_the_dispatcher(fake_bless) -> None:
    _, peripheral = _bless_peripheral()
    peripheral.open_server()
    peripheral.register_all_services()
    assert wait_for(lambda: peripheral.registration_settled)
    server = peripheral.handle

    peripheral.catalog.set_value(u.BATTERY_SERVICE, u.BATTERY_LEVEL, b"\x21")
    assert server.read_request_func(server.get_characteristic(u.BATTERY_LEVEL)) == bytearray(b"\x21")

    # Write-only characteristics answer with an empty value.
    control_point = server.get_characteristic(u.HEART_RATE_CONTROL_POINT)
    assert server.read_request_func(control_point) == bytearray()
    peripheral.close()


def test_bless_write_reply_from_loop_thread_updates_inline(fake_bless) -> None:
    _, peripheral = _bless_peripheral()
    peripheral.open_server()
    peripheral.register_all_services()
    assert wait_for(lambda: peripheral.registration_settled)
    attach_observer(peripheral, AGGREGATE_PEER)
    server = peripheral.handle

    async def _write() -> None:
        server.write_request_func(server.get_characteristic(u.SCALE_WRITE), bytearray(b"\xfe"))

    asyncio.run_coroutine_threadsafe(_write(), server.loop).result(2.0)

    expected = peripheral.catalog.find(u.SCALE_SERVICE, u.SCALE_NOTIFY).value
    assert server.updates == [(u.SCALE_SERVICE, u.SCALE_NOTIFY, expected)]
    peripheral.close()


def test_bless_notify_from_generator_thread(fake_bless) -> None:
    _, peripheral = _bless_peripheral()
    peripheral.open_server()
    peripheral.register_all_services()
    assert wait_for(lambda: peripheral.registration_settled)
    attach_observer(peripheral, AGGREGATE_PEER)

    peripheral.scheduler.generators[0].run_once()

    server = peripheral.handle
    # Off the loop thread the update is queued onto the loop rather than awaited.
    assert wait_for(lambda: server.updates)
    assert [update[1] for update in server.updates] == [u.BATTERY_LEVEL]
    assert server.updates[0][2] == peripheral.catalog.get_value(u.BATTERY_SERVICE, u.BATTERY_LEVEL)
    peripheral.close()


def test_bless_alert_level_resolves_by_service(fake_bless) -> None:
    _, peripheral = _bless_peripheral()
    peripheral.open_server()
    peripheral.register_all_services()
    assert wait_for(lambda: peripheral.registration_settled)
    server = peripheral.handle

    link_loss = server.get_characteristic(u.ALERT_LEVEL, u.LINK_LOSS_SERVICE)
    server.write_request_func(link_loss, bytearray(b"\x02"))

    assert peripheral.catalog.get_value(u.LINK_LOSS_SERVICE, u.ALERT_LEVEL) == b"\x02"
    assert peripheral.catalog.get_value(u.IMMEDIATE_ALERT_SERVICE, u.ALERT_LEVEL) == b"\x00"
    assert server.read_request_func(link_loss) == bytearray(b"\x02")
    peripheral.close()


def test_bless_submit_before_open_is_rejected(fake_bless) -> None:
    service = build_catalog(INFO, now=FIXED_NOW).services()[0]
    with pytest.raises(TransportConnectError):
        BlessHostStack("Bench").submit_service(None, service)


def test_bless_write_ack_error_is_logged(fake_bless, caplog: pytest.LogCaptureFixture) -> None:
    host = BlessHostStack("Bench")
    with caplog.at_level(logging.WARNING):
        host.send_write_ack(None, AGGREGATE_PEER, 7, AttStatus.OUT_OF_RANGE)
    assert "cannot forward ATT errors" in caplog.text


class RecordingPeripheral:
    def __init__(self) -> None:
        self.results: list[tuple[str, bool]] = []

    def on_registration_result(self, service_uuid: str, success: bool) -> None:
        self.results.append((service_uuid, success))


def test_logging_host_confirms_inline(caplog: pytest.LogCaptureFixture) -> None:
    service = build_catalog(INFO, now=FIXED_NOW).services()[0]
    stack = LoggingHostStack()
    recorder = RecordingPeripheral()
    stack.bind(recorder)

    with caplog.at_level(logging.INFO):
        handle = stack.open_server()
        stack.submit_service(handle, service)
        stack.notify(handle, "peer", service.characteristics[0], False)

    assert handle == 1
    assert recorder.results == [(u.BATTERY_SERVICE, True)]
    assert "[dry-run] Added service 0x180F (Battery)" in caplog.text
    assert "[dry-run] notify 0x2A19 -> peer: 50" in caplog.text


class FakeBleakClient:
    reply: bytes | None = b"\xfd\xfe"
    connected = True
    write_error: Exception | None = None
    instances: list[FakeBleakClient] = []

    def __init__(self, address: str, timeout: float = 10.0) -> None:
        self.address = address
        self.timeout = timeout
        self.writes: list[tuple[str, bytes, bool]] = []
        self.notify_callbacks: dict[str, object] = {}
        self.stopped: list[str] = []
        FakeBleakClient.instances.append(self)

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def __aenter__(self) -> FakeBleakClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None

    async def start_notify(self, uuid: str, callback) -> None:
        self.notify_callbacks[uuid] = callback

    async def stop_notify(self, uuid: str) -> None:
        self.stopped.append(uuid)

    async def write_gatt_char(self, uuid: str, data: bytes, response: bool = False) -> None:
        if self.write_error is not None:
            raise self.write_error
        self.writes.append((uuid, bytes(data), response))
        if self.reply is not None:
            for callback in self.notify_callbacks.values():
                callback(None, bytearray(self.reply))

    async def read_gatt_char(self, uuid: str) -> bytearray:
        return bytearray(b"\x01\x02")


@pytest.fixture
def fake_bleak(monkeypatch: pytest.MonkeyPatch):
    module = types.ModuleType("bleak")
    module.BleakClient = FakeBleakClient
    monkeypatch.setitem(sys.modules, "bleak", module)
    monkeypatch.setattr(FakeBleakClient, "instances", [])
    return module


def test_exchange_returns_first_notification(fake_bleak) -> None:
    response = BLEGATTCentral().exchange(
        "A4:C1:38:00:00:01",
        b"\xfe",
        write_char_uuid=u.SCALE_WRITE,
        notify_char_uuid=u.SCALE_NOTIFY,
    )

    assert response == b"\xfd\xfe"
    (client,) = FakeBleakClient.instances
    assert client.writes == [(u.SCALE_WRITE, b"\xfe", True)]
    assert client.stopped == [u.SCALE_NOTIFY]


def test_exchange_reads_back_without_notify_char(fake_bleak) -> None:
    response = BLEGATTCentral().exchange("A4:C1:38:00:00:01", b"\x01", write_char_uuid=u.HEART_RATE_CONTROL_POINT)
    assert response == b"\x01\x02"


def test_exchange_times_out_waiting_for_notification(fake_bleak, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(FakeBleakClient, "reply", None)
    with pytest.raises(TransportTimeoutError):
        BLEGATTCentral().exchange(
            "A4:C1:38:00:00:01",
            b"\xf2",
            write_char_uuid=u.SCALE_WRITE,
            notify_char_uuid=u.SCALE_NOTIFY,
            timeout_s=0.05,
        )


def test_exchange_connect_failure(fake_bleak, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(FakeBleakClient, "connected", False)
    with pytest.raises(TransportConnectError):
        BLEGATTCentral().exchange("A4:C1:38:00:00:01", b"\xfe", write_char_uuid=u.SCALE_WRITE)


def test_exchange_write_failure_is_wrapped(fake_bleak, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(FakeBleakClient, "write_error", OSError("GATT write failed"))
    with pytest.raises(TransportSendError, match="GATT write failed"):
        BLEGATTCentral().exchange("A4:C1:38:00:00:01", b"\xfe", write_char_uuid=u.SCALE_WRITE)
