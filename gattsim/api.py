"""Stable public API for embedding the simulator in other tooling.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass

from gattsim.core import codec, scale_frames
from gattsim.core.catalog import GattCatalog
from gattsim.core.errors import (
    CatalogLookupError,
    EncodingError,
    GattsimError,
    ProfileLoadError,
    ProfileValidationError,
    TransportConnectError,
    TransportError,
    TransportPermissionError,
    TransportSendError,
    TransportTimeoutError,
)
from gattsim.core.model import (
    AttStatus,
    Capability,
    Characteristic,
    Descriptor,
    DeviceInfo,
    PeripheralState,
    Profile,
    Service,
    SubscriptionMode,
)
from gattsim.core.peripheral import Peripheral, StatusListener
from gattsim.core.service import SimulatorService
from gattsim.transports.base import HostStack
from gattsim.transports.ble_gatt import BLEGATTCentral

__all__ = [
    "GattsimError",
    "CatalogLookupError",
    "EncodingError",
    "ProfileLoadError",
    "ProfileValidationError",
    "TransportError",
    "TransportConnectError",
    "TransportPermissionError",
    "TransportSendError",
    "TransportTimeoutError",
    "AttStatus",
    "Capability",
    "Characteristic",
    "Descriptor",
    "DeviceInfo",
    "GattCatalog",
    "HostStack",
    "Peripheral",
    "PeripheralState",
    "Profile",
    "Service",
    "SubscriptionMode",
    "BLEGATTCentral",
    "CatalogEntry",
    "Client",
    "codec",
    "scale_frames",
]


@dataclass(frozen=True)
class CatalogEntry:
    """One characteristic of a profile's catalog, flattened for display."""

    service_uuid: str
    service_name: str
    characteristic_uuid: str
    capabilities: Capability
    value_hex: str


class Client:
    """Public client for the simulator's profiles, catalog and peripheral lifecycle.

    A `Client` wraps profile loading, peripheral construction and the BLE central
    behind a stable API intended for third-party tools (test rigs, scripts).
    """

    def __init__(self, *, central: BLEGATTCentral | None = None) -> None:
        self._service = SimulatorService(central=central)

    @property
    def load_warnings(self) -> tuple[str, ...]:
        return self._service.load_warnings

    def list_profiles(self) -> list[Profile]:
        return self._service.list_profiles()

    def get_profile(self, profile_id: str | None = None) -> Profile:
        return self._service.get_profile(profile_id)

    def get_catalog(self, profile_id: str | None = None) -> list[CatalogEntry]:
        catalog = self._service.catalog(profile_id)
        return [
            CatalogEntry(
                service_uuid=service.uuid,
                service_name=service.name,
                characteristic_uuid=characteristic.uuid,
                capabilities=characteristic.capabilities,
                value_hex=characteristic.value.hex(),
            )
            for service in catalog.services()
            for characteristic in service.characteristics
        ]

    def create_peripheral(
        self,
        host: HostStack,
        *,
        profile_id: str | None = None,
        status_listener: StatusListener | None = None,
    ) -> Peripheral:
        """Build a peripheral on a caller-supplied host stack."""
        return Peripheral(host, self._service.get_profile(profile_id), status_listener=status_listener)

    def run(
        self,
        *,
        profile_id: str | None = None,
        dry_run: bool = False,
        name: str | None = None,
        duration_s: float | None = None,
        stop_event: threading.Event | None = None,
        status_listener: StatusListener | None = None,
    ) -> Peripheral:
        return self._service.run(
            profile_id,
            dry_run=dry_run,
            name=name,
            duration_s=duration_s,
            stop_event=stop_event,
            status_listener=status_listener,
        )

    def exchange(
        self,
        address: str,
        payload: bytes,
        *,
        write_char: str,
        notify_char: str | None = None,
        timeout_s: float = 5.0,
    ) -> bytes | None:
        return self._service.exchange(
            address,
            payload,
            write_char=write_char,
            notify_char=notify_char,
            timeout_s=timeout_s,
        )
