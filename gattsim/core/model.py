"""Core data models shared by the catalog, dispatcher, notifier and host adapters."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum, IntEnum, IntFlag

from gattsim.core.uuids import CLIENT_CHARACTERISTIC_CONFIGURATION


class ServiceRole(Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


class Capability(IntFlag):
    READ = 0x02
    WRITE_WITHOUT_RESPONSE = 0x04
    WRITE = 0x08
    NOTIFY = 0x10
    INDICATE = 0x20


class SubscriptionMode(Enum):
    NONE = "none"
    NOTIFY = "notify"
    INDICATE = "indicate"

    def to_cccd(self) -> bytes:
        return _CCCD_VALUES[self]

    @classmethod
    def from_cccd(cls, value: bytes) -> SubscriptionMode | None:
        """Decode a CCCD write; unknown bit patterns return None."""
        for mode, pattern in _CCCD_VALUES.items():
            if bytes(value) == pattern:
                return mode
        return None


_CCCD_VALUES = {
    SubscriptionMode.NONE: b"\x00\x00",
    SubscriptionMode.NOTIFY: b"\x01\x00",
    SubscriptionMode.INDICATE: b"\x02\x00",
}


class AttStatus(IntEnum):
    SUCCESS = 0x00
    READ_NOT_PERMITTED = 0x02
    WRITE_NOT_PERMITTED = 0x03
    REQUEST_NOT_SUPPORTED = 0x06
    INVALID_OFFSET = 0x07
    INVALID_ATTRIBUTE_VALUE_LENGTH = 0x0D
    CONTROL_POINT_NOT_SUPPORTED = 0x80
    OUT_OF_RANGE = 0xFF


class PeripheralState(Enum):
    IDLE = "idle"
    SIMULATING = "simulating"


@dataclass(frozen=True)
class Descriptor:
    uuid: str
    value: bytes = b""

    @property
    def is_cccd(self) -> bool:
        return self.uuid == CLIENT_CHARACTERISTIC_CONFIGURATION


@dataclass(eq=False)
class Characteristic:
    uuid: str
    service_uuid: str
    capabilities: Capability
    initial_value: bytes = b""
    descriptors: tuple[Descriptor, ...] = ()
    _value: bytes = field(init=False, repr=False)
    _lock: threading.Lock = field(init=False, repr=False, default_factory=threading.Lock)

    def __post_init__(self) -> None:
        self._value = bytes(self.initial_value)
        if self.capabilities & (Capability.NOTIFY | Capability.INDICATE) and self.cccd is None:
            self.descriptors = (*self.descriptors, Descriptor(CLIENT_CHARACTERISTIC_CONFIGURATION))

    @property
    def key(self) -> tuple[str, str]:
        return (self.service_uuid, self.uuid)

    @property
    def value(self) -> bytes:
        with self._lock:
            return self._value

    def set_value(self, value: bytes) -> None:
        with self._lock:
            self._value = bytes(value)

    @property
    def readable(self) -> bool:
        return bool(self.capabilities & Capability.READ)

    @property
    def writable(self) -> bool:
        return bool(self.capabilities & (Capability.WRITE | Capability.WRITE_WITHOUT_RESPONSE))

    @property
    def notifiable(self) -> bool:
        return bool(self.capabilities & Capability.NOTIFY)

    @property
    def indicatable(self) -> bool:
        return bool(self.capabilities & Capability.INDICATE)

    @property
    def cccd(self) -> Descriptor | None:
        return next((d for d in self.descriptors if d.is_cccd), None)

    def descriptor(self, uuid: str) -> Descriptor | None:
        return next((d for d in self.descriptors if d.uuid == uuid), None)


@dataclass(frozen=True)
class Service:
    uuid: str
    characteristics: tuple[Characteristic, ...]
    role: ServiceRole = ServiceRole.PRIMARY
    name: str = ""

    def characteristic(self, uuid: str) -> Characteristic | None:
        return next((c for c in self.characteristics if c.uuid == uuid), None)


@dataclass(frozen=True)
class DeviceInfo:
    manufacturer: str
    model: str
    serial: str
    firmware: str


@dataclass(frozen=True)
class GeneratorSpec:
    period_s: float
    enabled: bool = True


@dataclass(frozen=True)
class SimulationSettings:
    auto_start_on_connect: bool
    start_delay_s: float
    history_reply_delay_s: float
    generators: dict[str, GeneratorSpec]


@dataclass(frozen=True)
class Profile:
    id: str
    name: str
    device_info: DeviceInfo
    simulation: SimulationSettings
