from __future__ import annotations

import time
from datetime import datetime

import pytest

from gattsim.core.errors import TransportSendError
from gattsim.core.model import DeviceInfo, GeneratorSpec, Profile, SimulationSettings

FIXED_NOW = datetime(2024, 1, 7, 12, 30, 45)


class RecordingHost:
    """Host stack fake that records every outbound call in order."""

    def __init__(self, *, auto_confirm: bool = False) -> None:
        self.auto_confirm = auto_confirm
        self.peripheral = None
        self.events: list[tuple] = []
        self.submitted: list[str] = []
        self.notifications: list[tuple[str, str, bytes, bool]] = []
        self.failing_devices: set[str] = set()
        self.opened = 0
        self.closed: list[object] = []

    def bind(self, peripheral) -> None:
        self.peripheral = peripheral

    def open_server(self):
        self.opened += 1
        return f"server-{self.opened}"

    def close_server(self, handle) -> None:
        self.closed.append(handle)

    def submit_service(self, handle, service) -> None:
        self.submitted.append(service.uuid)
        self.events.append(("submit", service.uuid))
        if self.auto_confirm and self.peripheral is not None:
            self.peripheral.on_registration_result(service.uuid, True)

    def notify(self, handle, device, characteristic, as_indication) -> None:
        if device in self.failing_devices:
            raise TransportSendError(f"{device} went away")
        entry = (device, characteristic.uuid, characteristic.value, as_indication)
        self.notifications.append(entry)
        self.events.append(("notify", *entry))

    def send_read_response(self, handle, device, request_id, status, offset, value) -> None:
        self.events.append(("read", device, request_id, status, bytes(value)))

    def send_write_ack(self, handle, device, request_id, status) -> None:
        self.events.append(("ack", device, request_id, status))

    def notifications_for(self, device: str) -> list[tuple[str, str, bytes, bool]]:
        return [n for n in self.notifications if n[0] == device]


def make_profile(
    *,
    auto_start: bool = False,
    start_delay_s: float = 0.0,
    history_reply_delay_s: float = 0.0,
    generators: dict[str, GeneratorSpec] | None = None,
) -> Profile:
    return Profile(
        id="test",
        name="Test profile",
        device_info=DeviceInfo(manufacturer="gattsim", model="GS-TEST", serial="0001", firmware="2.3.1"),
        simulation=SimulationSettings(
            auto_start_on_connect=auto_start,
            start_delay_s=start_delay_s,
            history_reply_delay_s=history_reply_delay_s,
            generators=generators if generators is not None else {"battery": GeneratorSpec(period_s=30.0)},
        ),
    )


def wait_for(predicate, timeout_s: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def host() -> RecordingHost:
    return RecordingHost()


@pytest.fixture(autouse=True)
def isolated_xdg(monkeypatch: pytest.MonkeyPatch, tmp_path):
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    return tmp_path
