"""Encoders turning measurement values into characteristic wire formats.

Every function here is pure: the same inputs always produce the same bytes and
nothing touches the GATT model or the host stack. Multi-byte integers are
little-endian unless a format says otherwise.

Fields that the Bluetooth SIG defines as IEEE-11073 SFLOAT (blood pressure,
glucose concentration, pulse oximetry) are written as plain 16-bit integers,
truncated the same way a C ``(short)`` cast would. Readers expecting real SFLOAT
will see the mantissa only.
"""

from __future__ import annotations

import struct
from datetime import datetime

from gattsim.core.errors import EncodingError

HR_FLAG_UINT16 = 0x01
HR_FLAG_ENERGY_EXPENDED = 0x08
_HR_BASE_FLAGS = 0x08

BP_FLAG_KPA = 0x01
BP_FLAG_PULSE_RATE = 0x04

GLUCOSE_FLAG_TIME_OFFSET = 0x01
GLUCOSE_FLAG_TYPE_LOCATION = 0x02
GLUCOSE_FLAG_MOL_PER_L = 0x04

INDOOR_BIKE_FLAGS = 0x0136
TREADMILL_FLAGS = 0x210C
CROSS_TRAINER_FLAGS = 0x090C

ADJUST_REASON_MANUAL = 0x01

CONTROL_POINT_RESPONSE = 0x80
CP_RESULT_SUCCESS = 0x01
CP_RESULT_OP_CODE_NOT_SUPPORTED = 0x02
CP_RESULT_INVALID_PARAMETER = 0x03
CP_RESULT_OPERATION_FAILED = 0x04

RACP_NUMBER_OF_RECORDS_RESPONSE = 0x05
RACP_RESPONSE_CODE = 0x06
RACP_OPERATOR_NULL = 0x00
RACP_SUCCESS = 0x01
RACP_OP_CODE_NOT_SUPPORTED = 0x02
RACP_NO_RECORDS_FOUND = 0x06


def _check_range(name: str, value: int, low: int, high: int) -> int:
    if not low <= value <= high:
        raise EncodingError(f"{name} {value} outside encodable range {low}..{high}")
    return value


def _downcast16(value: float) -> bytes:
    return struct.pack("<H", int(value) & 0xFFFF)


def _uint24(name: str, value: int) -> bytes:
    return _check_range(name, int(value), 0, 0xFFFFFF).to_bytes(3, "little")


def uint8(value: int) -> bytes:
    return bytes([_check_range("uint8", int(value), 0, 0xFF)])


def uint16(value: int) -> bytes:
    return struct.pack("<H", _check_range("uint16", int(value), 0, 0xFFFF))


def uint32(value: int) -> bytes:
    return struct.pack("<I", _check_range("uint32", int(value), 0, 0xFFFFFFFF))


def utf8_string(text: str) -> bytes:
    return text.encode("utf-8")


def battery_level(level: int) -> bytes:
    """Battery Level (0x2A19): one unsigned byte, percent."""
    return bytes([_check_range("battery level", int(level), 0, 100)])


def heart_rate_measurement(
    heart_rate: int,
    uint16_format: bool = False,
    energy_expended_present: bool = False,
    energy_expended: int = 0,
) -> bytes:
    """Heart Rate Measurement (0x2A37).

    The flags byte always starts from 0x08, so the short form is exactly
    ``[0x08, heart_rate]``. Bit 0 switches the heart rate to 16 bits and the
    energy-expended field is appended when requested.
    """
    flags = _HR_BASE_FLAGS
    if uint16_format:
        flags |= HR_FLAG_UINT16
    if energy_expended_present:
        flags |= HR_FLAG_ENERGY_EXPENDED

    payload = bytearray([flags])
    if uint16_format:
        payload += struct.pack("<H", _check_range("heart rate", int(heart_rate), 0, 0xFFFF))
    else:
        payload.append(_check_range("heart rate", int(heart_rate), 0, 0xFF))
    if energy_expended_present:
        payload += struct.pack("<H", _check_range("energy expended", int(energy_expended), 0, 0xFFFF))
    return bytes(payload)


def temperature_measurement(celsius: float) -> bytes:
    """Temperature Measurement (0x2A1C): Celsius flags byte and a float32."""
    return struct.pack("<Bf", 0x00, celsius)


def iso_day_of_week(sunday_zero_based: int) -> int:
    """Convert a Sunday=0..Saturday=6 weekday to the SIG Monday=1..Sunday=7 form."""
    _check_range("day of week", sunday_zero_based, 0, 6)
    return 7 if sunday_zero_based == 0 else sunday_zero_based


def date_time(moment: datetime) -> bytes:
    """Date Time (0x2A08): year, month, day, hours, minutes, seconds."""
    return struct.pack(
        "<HBBBBB",
        _check_range("year", moment.year, 0, 9999),
        moment.month,
        moment.day,
        moment.hour,
        moment.minute,
        moment.second,
    )


def day_date_time(moment: datetime) -> bytes:
    return date_time(moment) + bytes([iso_day_of_week(moment.isoweekday() % 7)])


def exact_time_256(moment: datetime) -> bytes:
    # Fractions256 is never populated.
    return day_date_time(moment) + b"\x00"


def current_time(moment: datetime, adjust_reason: int | None = ADJUST_REASON_MANUAL) -> bytes:
    """Current Time (0x2A2B): Exact Time 256 plus the optional adjust reason byte."""
    value = exact_time_256(moment)
    if adjust_reason is None:
        return value
    return value + uint8(adjust_reason)


def local_time_information(time_zone_quarters: int, dst_offset: int = 0) -> bytes:
    _check_range("time zone", time_zone_quarters, -48, 56)
    return struct.pack("<bB", time_zone_quarters, dst_offset)


def blood_pressure_measurement(
    systolic: float,
    diastolic: float,
    mean_arterial_pressure: float,
    pulse_rate: float | None = None,
    kpa: bool = False,
) -> bytes:
    """Blood Pressure Measurement (0x2A35) with 16-bit integer pressure fields."""
    flags = 0x00
    if kpa:
        flags |= BP_FLAG_KPA
    if pulse_rate is not None:
        flags |= BP_FLAG_PULSE_RATE

    payload = bytes([flags]) + _downcast16(systolic) + _downcast16(diastolic) + _downcast16(mean_arterial_pressure)
    if pulse_rate is not None:
        payload += _downcast16(pulse_rate)
    return payload


def glucose_measurement(
    sequence_number: int,
    base_time: datetime,
    concentration: float,
    time_offset: int | None = None,
    sample_type: int | None = None,
    sample_location: int | None = None,
    mmol_per_l: bool = False,
) -> bytes:
    """Glucose Measurement (0x2A18).

    Layout: flags, sequence number, base time, optional time offset (minutes),
    concentration, optional type/location byte (type in the low nibble).
    Type and location are written together; passing only one of them is an error.
    """
    if (sample_type is None) != (sample_location is None):
        raise EncodingError("sample type and sample location must be given together")

    flags = 0x00
    if time_offset is not None:
        flags |= GLUCOSE_FLAG_TIME_OFFSET
    if sample_type is not None:
        flags |= GLUCOSE_FLAG_TYPE_LOCATION
    if mmol_per_l:
        flags |= GLUCOSE_FLAG_MOL_PER_L

    payload = bytearray([flags])
    payload += uint16(sequence_number)
    payload += date_time(base_time)
    if time_offset is not None:
        payload += struct.pack("<h", _check_range("time offset", int(time_offset), -0x8000, 0x7FFF))
    payload += _downcast16(concentration)
    if sample_type is not None and sample_location is not None:
        nibble_type = _check_range("sample type", sample_type, 0, 0x0F)
        nibble_location = _check_range("sample location", sample_location, 0, 0x0F)
        payload.append((nibble_location << 4) | nibble_type)
    return bytes(payload)


def _fitness_frame(
    flags: int,
    speed_kmh: float,
    second_field: bytes,
    power_w: int,
    heart_rate: int,
    total_distance_m: int,
) -> bytes:
    return (
        struct.pack("<H", flags)
        + struct.pack("<H", _check_range("speed", round(speed_kmh * 100), 0, 0xFFFF))
        + second_field
        + struct.pack("<h", _check_range("power", int(power_w), -0x8000, 0x7FFF))
        + bytes([_check_range("heart rate", int(heart_rate), 0, 0xFF)])
        + _uint24("total distance", total_distance_m)
    )


def indoor_bike_data(
    speed_kmh: float,
    cadence_rpm: float,
    power_w: int,
    heart_rate: int,
    total_distance_m: int,
) -> bytes:
    """Indoor Bike Data (0x2AD2): speed x100, cadence x2, power, HR, 24-bit distance."""
    cadence = struct.pack("<H", _check_range("cadence", round(cadence_rpm * 2), 0, 0xFFFF))
    return _fitness_frame(INDOOR_BIKE_FLAGS, speed_kmh, cadence, power_w, heart_rate, total_distance_m)


def treadmill_data(
    speed_kmh: float,
    incline_pct: float,
    power_w: int,
    heart_rate: int,
    total_distance_m: int,
) -> bytes:
    """Treadmill Data (0x2ACD): same layout as indoor bike with incline x10 in place of cadence."""
    incline = struct.pack("<h", _check_range("incline", round(incline_pct * 10), -0x8000, 0x7FFF))
    return _fitness_frame(TREADMILL_FLAGS, speed_kmh, incline, power_w, heart_rate, total_distance_m)


def cross_trainer_data(
    speed_kmh: float,
    cadence_spm: float,
    power_w: int,
    heart_rate: int,
    total_distance_m: int,
) -> bytes:
    cadence = struct.pack("<H", _check_range("cadence", round(cadence_spm * 2), 0, 0xFFFF))
    return _fitness_frame(CROSS_TRAINER_FLAGS, speed_kmh, cadence, power_w, heart_rate, total_distance_m)


def fitness_machine_feature(machine_features: int, target_features: int) -> bytes:
    return uint32(machine_features) + uint32(target_features)


def supported_resistance_level_range(minimum: int, maximum: int, increment: int) -> bytes:
    return struct.pack("<hhH", minimum, maximum, increment)


def es_temperature(celsius: float) -> bytes:
    """Environmental Sensing Temperature (0x2A6E): sint16 in 0.01 degC."""
    return struct.pack("<h", _check_range("temperature", round(celsius * 100), -0x8000, 0x7FFF))


def es_humidity(percent: float) -> bytes:
    """Humidity (0x2A6F): uint16 in 0.01 %."""
    return uint16(_check_range("humidity", round(percent * 100), 0, 10000))


def es_pressure(hpa: float) -> bytes:
    """Pressure (0x2A6D): uint32 in 0.1 Pa, i.e. hPa x1000."""
    return uint32(round(hpa * 1000))


def es_wind_chill(celsius: float) -> bytes:
    return struct.pack("<b", _check_range("wind chill", round(celsius), -128, 127))


def weight_measurement(kilograms: float) -> bytes:
    """Weight Measurement (0x2A9D): SI flags and uint16 with 0.005 kg resolution."""
    return b"\x00" + uint16(round(kilograms / 0.005))


def body_composition_measurement(body_fat_pct: float) -> bytes:
    return uint16(0x0000) + uint16(round(body_fat_pct * 10))


def plx_continuous_measurement(spo2: float, pulse_rate: float) -> bytes:
    return b"\x00" + _downcast16(spo2) + _downcast16(pulse_rate)


def rsc_measurement(speed_mps: float, cadence_spm: int) -> bytes:
    """RSC Measurement (0x2A53): speed in 1/256 m/s and cadence in steps per minute."""
    return b"\x00" + uint16(round(speed_mps * 256)) + uint8(cadence_spm)


def cycling_power_measurement(power_w: int) -> bytes:
    return uint16(0x0000) + struct.pack("<h", _check_range("power", int(power_w), -0x8000, 0x7FFF))


def tx_power_level(dbm: int) -> bytes:
    return struct.pack("<b", _check_range("tx power", dbm, -100, 20))


def measurement_interval(seconds: int) -> bytes:
    return uint16(seconds)


def valid_range_uint16(lower: int, upper: int) -> bytes:
    return uint16(lower) + uint16(upper)


def control_point_response(request_opcode: int, result: int) -> bytes:
    """Fitness Machine Control Point response: 0x80, request op code, result code."""
    return bytes([CONTROL_POINT_RESPONSE, request_opcode & 0xFF, result & 0xFF])


def racp_response(request_opcode: int, response_code: int) -> bytes:
    """Record Access Control Point 'Response Code' indication."""
    return bytes([RACP_RESPONSE_CODE, RACP_OPERATOR_NULL, request_opcode & 0xFF, response_code & 0xFF])


def racp_number_of_records(count: int) -> bytes:
    return bytes([RACP_NUMBER_OF_RECORDS_RESPONSE, RACP_OPERATOR_NULL]) + uint16(count)
