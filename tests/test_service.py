from __future__ import annotations

import pytest

from gattsim.core import uuids as u
from gattsim.core.errors import ProfileLoadError, TransportConnectError, TransportTimeoutError
from gattsim.core.model import PeripheralState
from gattsim.core.service import DRY_RUN_PEER, SimulatorService, attach_observer
from gattsim.transports.logging_host import LoggingHostStack

from conftest import RecordingHost


class RejectingHost(RecordingHost):
    def submit_service(self, handle, service) -> None:
        super().submit_service(handle, service)
        self.peripheral.on_registration_result(service.uuid, False)


class FakeCentral:
    def __init__(self) -> None:
        self.calls: list[tuple] = []

    def exchange(self, address, payload, *, write_char_uuid, notify_char_uuid=None, timeout_s=5.0):
        self.calls.append((address, payload, write_char_uuid, notify_char_uuid, timeout_s))
        return b"\xf2\x00\xf2"


def _service_with(host: RecordingHost, central=None) -> SimulatorService:
    return SimulatorService(central=central, host_factory=lambda profile, dry_run, name: host)


def test_unknown_profile_rejected() -> None:
    service = SimulatorService()
    with pytest.raises(ProfileLoadError, match="fitness"):
        service.get_profile("missing")


def test_catalog_uses_profile_device_info() -> None:
    catalog = SimulatorService().catalog("fitness")
    assert catalog.get_value(u.DEVICE_INFORMATION_SERVICE, u.MODEL_NUMBER_STRING) == b"GS-FTMS"
    assert len(catalog) == 18


def test_dry_run_builds_logging_host() -> None:
    peripheral = SimulatorService().build_peripheral("default", dry_run=True)
    assert isinstance(peripheral.host, LoggingHostStack)


def test_run_registers_subscribes_and_simulates() -> None:
    host = RecordingHost(auto_confirm=True)
    messages: list[str] = []
    peripheral = _service_with(host).run("fitness", dry_run=True, duration_s=0.2, status_listener=messages.append)

    assert host.submitted == [s.uuid for s in peripheral.catalog.services()]
    assert host.notifications_for(DRY_RUN_PEER)
    assert peripheral.state is PeripheralState.IDLE
    assert host.closed == ["server-1"]
    assert "Simulation started" in messages


def test_run_reports_failed_registration() -> None:
    host = RejectingHost()
    with pytest.raises(TransportConnectError, match="0x180F"):
        _service_with(host).run("fitness", duration_s=0)
    assert host.submitted == [u.BATTERY_SERVICE]
    assert host.closed == ["server-1"]


def test_run_times_out_when_host_never_answers() -> None:
    host = RecordingHost()
    with pytest.raises(TransportTimeoutError):
        _service_with(host).run("fitness", duration_s=0, registration_timeout_s=0.1)
    assert host.closed == ["server-1"]


def test_attach_observer_subscribes_with_the_right_mode() -> None:
    host = RecordingHost()
    peripheral = _service_with(host).build_peripheral("fitness")
    attach_observer(peripheral, "watcher")

    battery = peripheral.catalog.find(u.BATTERY_SERVICE, u.BATTERY_LEVEL)
    temperature = peripheral.catalog.find(u.HEALTH_THERMOMETER_SERVICE, u.TEMPERATURE_MEASUREMENT)
    assert peripheral.registry.subscription("watcher", battery).to_cccd() == b"\x01\x00"
    assert peripheral.registry.subscription("watcher", temperature).to_cccd() == b"\x02\x00"


def test_exchange_normalizes_uuids() -> None:
    central = FakeCentral()
    response = _service_with(RecordingHost(), central=central).exchange(
        "AA:BB:CC:DD:EE:FF",
        b"\xf2",
        write_char="fff1",
        notify_char="0xFFF4",
        timeout_s=2.0,
    )

    assert response == b"\xf2\x00\xf2"
    assert central.calls == [("AA:BB:CC:DD:EE:FF", b"\xf2", u.SCALE_WRITE, u.SCALE_NOTIFY, 2.0)]
