"""Service layer used by the CLI and the public API."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

from gattsim.core.catalog import GattCatalog, build_catalog
from gattsim.core.errors import ProfileLoadError, TransportConnectError, TransportTimeoutError
from gattsim.core.model import Profile, SubscriptionMode
from gattsim.core.peripheral import Peripheral, StatusListener
from gattsim.core.profile_loader import DEFAULT_PROFILE_ID, load_profiles
from gattsim.core.uuids import normalize_uuid, short_name
from gattsim.transports.ble_gatt import BLEGATTCentral
from gattsim.transports.bless_host import AGGREGATE_PEER, BlessHostStack
from gattsim.transports.logging_host import LoggingHostStack

LOGGER = logging.getLogger(__name__)

DRY_RUN_PEER = "dry-run-peer"
_REGISTRATION_POLL_S = 0.05


class SimulatorService:
    def __init__(
        self,
        *,
        central: BLEGATTCentral | None = None,
        host_factory: Callable[[Profile, bool, str | None], Any] | None = None,
    ) -> None:
        loaded = load_profiles()
        self.profiles = loaded.profiles
        self.load_warnings = loaded.warnings
        self.central = central or BLEGATTCentral()
        self._host_factory = host_factory or _default_host

    def list_profiles(self) -> list[Profile]:
        return sorted(self.profiles.values(), key=lambda p: p.id)

    def get_profile(self, profile_id: str | None = None) -> Profile:
        wanted = profile_id or DEFAULT_PROFILE_ID
        profile = self.profiles.get(wanted)
        if profile is None:
            available = ", ".join(sorted(self.profiles)) or "<none>"
            raise ProfileLoadError(
                f"Unknown profile '{wanted}'. Available: {available}. Use 'gattsim profiles' to inspect them."
            )
        return profile

    def catalog(self, profile_id: str | None = None) -> GattCatalog:
        return build_catalog(self.get_profile(profile_id).device_info)

    def build_peripheral(
        self,
        profile_id: str | None = None,
        *,
        dry_run: bool = False,
        name: str | None = None,
        status_listener: StatusListener | None = None,
    ) -> Peripheral:
        profile = self.get_profile(profile_id)
        host = self._host_factory(profile, dry_run, name)
        peripheral = Peripheral(host, profile, status_listener=status_listener)
        host.bind(peripheral)
        return peripheral

    def run(
        self,
        profile_id: str | None = None,
        *,
        dry_run: bool = False,
        name: str | None = None,
        duration_s: float | None = None,
        registration_timeout_s: float = 30.0,
        status_listener: StatusListener | None = None,
        stop_event: threading.Event | None = None,
    ) -> Peripheral:
        """Bring up a peripheral and simulate until ``duration_s`` elapses or ``stop_event`` is set."""
        peripheral = self.build_peripheral(
            profile_id,
            dry_run=dry_run,
            name=name,
            status_listener=status_listener,
        )
        stop = stop_event or threading.Event()
        try:
            if not peripheral.open_server():
                raise TransportConnectError("Could not open the GATT server")
            peripheral.register_all_services()
            _wait_for_registration(peripheral, registration_timeout_s)
            if peripheral.failed_services:
                failed = ", ".join(short_name(uuid) for uuid in peripheral.failed_services)
                raise TransportConnectError(f"Service registration failed: {failed}")

            advertise = getattr(peripheral.host, "advertise", None)
            if advertise is not None:
                advertise(peripheral.handle)
            attach_observer(peripheral, DRY_RUN_PEER if dry_run else AGGREGATE_PEER)
            if not peripheral.profile.simulation.auto_start_on_connect:
                peripheral.start()
            stop.wait(duration_s)
        finally:
            peripheral.close()
        return peripheral

    def exchange(
        self,
        address: str,
        payload: bytes,
        *,
        write_char: str,
        notify_char: str | None = None,
        timeout_s: float = 5.0,
    ) -> bytes | None:
        return self.central.exchange(
            address,
            payload,
            write_char_uuid=normalize_uuid(write_char),
            notify_char_uuid=normalize_uuid(notify_char) if notify_char else None,
            timeout_s=timeout_s,
        )


def attach_observer(peripheral: Peripheral, device: str) -> None:
    """Connect ``device`` and subscribe it to every notifiable or indicatable characteristic."""
    peripheral.on_connected(device)
    request_id = 0
    for service in peripheral.catalog.services():
        for characteristic in service.characteristics:
            cccd = characteristic.cccd
            if cccd is None:
                continue
            mode = SubscriptionMode.NOTIFY if characteristic.notifiable else SubscriptionMode.INDICATE
            request_id += 1
            peripheral.on_descriptor_write(device, request_id, characteristic, cccd, mode.to_cccd(), response_needed=False)


def _wait_for_registration(peripheral: Peripheral, timeout_s: float) -> None:
    deadline = time.monotonic() + timeout_s
    while not peripheral.registration_settled:
        if time.monotonic() >= deadline:
            raise TransportTimeoutError(f"Service registration did not finish within {timeout_s:.0f}s")
        time.sleep(_REGISTRATION_POLL_S)


def _default_host(profile: Profile, dry_run: bool, name: str | None) -> Any:
    if dry_run:
        return LoggingHostStack()
    return BlessHostStack(name or profile.device_info.model)
