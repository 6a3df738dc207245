"""Service, characteristic and descriptor identifiers exposed by the simulator."""

from __future__ import annotations

import re

_BASE_SUFFIX = "-0000-1000-8000-00805f9b34fb"
_UUID128_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")


def sig_uuid(short: int) -> str:
    """Expand a 16-bit assigned number onto the Bluetooth base UUID."""
    return f"{short:08x}{_BASE_SUFFIX}"


def normalize_uuid(value: str) -> str:
    """Return the lowercase 128-bit form of a 16-, 32- or 128-bit UUID string."""
    normalized = value.strip().lower()
    if normalized.startswith("0x"):
        normalized = normalized[2:]
    if len(normalized) in (4, 8) and all(c in "0123456789abcdef" for c in normalized):
        return sig_uuid(int(normalized, 16))
    if not _UUID128_RE.match(normalized):
        raise ValueError(f"'{value}' is not a 16-bit, 32-bit, or 128-bit UUID string")
    return normalized


def short_name(uuid: str) -> str:
    """Render SIG-based UUIDs as 0xXXXX for logs; other UUIDs are returned unchanged."""
    if uuid.endswith(_BASE_SUFFIX) and uuid.startswith("0000"):
        return f"0x{uuid[4:8].upper()}"
    return uuid


# Descriptors
CHARACTERISTIC_USER_DESCRIPTION = sig_uuid(0x2901)
CLIENT_CHARACTERISTIC_CONFIGURATION = sig_uuid(0x2902)
VALID_RANGE = sig_uuid(0x2906)

# Services
IMMEDIATE_ALERT_SERVICE = sig_uuid(0x1802)
LINK_LOSS_SERVICE = sig_uuid(0x1803)
TX_POWER_SERVICE = sig_uuid(0x1804)
CURRENT_TIME_SERVICE = sig_uuid(0x1805)
GLUCOSE_SERVICE = sig_uuid(0x1808)
HEALTH_THERMOMETER_SERVICE = sig_uuid(0x1809)
DEVICE_INFORMATION_SERVICE = sig_uuid(0x180A)
HEART_RATE_SERVICE = sig_uuid(0x180D)
BATTERY_SERVICE = sig_uuid(0x180F)
BLOOD_PRESSURE_SERVICE = sig_uuid(0x1810)
RUNNING_SPEED_AND_CADENCE_SERVICE = sig_uuid(0x1814)
CYCLING_POWER_SERVICE = sig_uuid(0x1818)
ENVIRONMENTAL_SENSING_SERVICE = sig_uuid(0x181A)
BODY_COMPOSITION_SERVICE = sig_uuid(0x181B)
WEIGHT_SCALE_SERVICE = sig_uuid(0x181D)
PULSE_OXIMETER_SERVICE = sig_uuid(0x1822)
FITNESS_MACHINE_SERVICE = sig_uuid(0x1826)
SCALE_SERVICE = sig_uuid(0xFFF0)

# Characteristics
ALERT_LEVEL = sig_uuid(0x2A06)
TX_POWER_LEVEL = sig_uuid(0x2A07)
LOCAL_TIME_INFORMATION = sig_uuid(0x2A0F)
GLUCOSE_MEASUREMENT = sig_uuid(0x2A18)
BATTERY_LEVEL = sig_uuid(0x2A19)
TEMPERATURE_MEASUREMENT = sig_uuid(0x2A1C)
TEMPERATURE_TYPE = sig_uuid(0x2A1D)
MEASUREMENT_INTERVAL = sig_uuid(0x2A21)
MODEL_NUMBER_STRING = sig_uuid(0x2A24)
SERIAL_NUMBER_STRING = sig_uuid(0x2A25)
FIRMWARE_REVISION_STRING = sig_uuid(0x2A26)
MANUFACTURER_NAME_STRING = sig_uuid(0x2A29)
CURRENT_TIME = sig_uuid(0x2A2B)
BLOOD_PRESSURE_MEASUREMENT = sig_uuid(0x2A35)
HEART_RATE_MEASUREMENT = sig_uuid(0x2A37)
BODY_SENSOR_LOCATION = sig_uuid(0x2A38)
HEART_RATE_CONTROL_POINT = sig_uuid(0x2A39)
BLOOD_PRESSURE_FEATURE = sig_uuid(0x2A49)
GLUCOSE_FEATURE = sig_uuid(0x2A51)
RECORD_ACCESS_CONTROL_POINT = sig_uuid(0x2A52)
RSC_MEASUREMENT = sig_uuid(0x2A53)
RSC_FEATURE = sig_uuid(0x2A54)
PLX_CONTINUOUS_MEASUREMENT = sig_uuid(0x2A5F)
CYCLING_POWER_MEASUREMENT = sig_uuid(0x2A63)
CYCLING_POWER_FEATURE = sig_uuid(0x2A65)
PRESSURE = sig_uuid(0x2A6D)
ES_TEMPERATURE = sig_uuid(0x2A6E)
HUMIDITY = sig_uuid(0x2A6F)
WIND_CHILL = sig_uuid(0x2A79)
BODY_COMPOSITION_FEATURE = sig_uuid(0x2A9B)
BODY_COMPOSITION_MEASUREMENT = sig_uuid(0x2A9C)
WEIGHT_MEASUREMENT = sig_uuid(0x2A9D)
WEIGHT_SCALE_FEATURE = sig_uuid(0x2A9E)
FITNESS_MACHINE_FEATURE = sig_uuid(0x2ACC)
TREADMILL_DATA = sig_uuid(0x2ACD)
CROSS_TRAINER_DATA = sig_uuid(0x2ACE)
INDOOR_BIKE_DATA = sig_uuid(0x2AD2)
SUPPORTED_RESISTANCE_LEVEL_RANGE = sig_uuid(0x2AD6)
FITNESS_MACHINE_CONTROL_POINT = sig_uuid(0x2AD9)
SCALE_WRITE = sig_uuid(0xFFF1)
SCALE_NOTIFY = sig_uuid(0xFFF4)
