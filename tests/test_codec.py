from __future__ import annotations

import struct
from datetime import datetime

import pytest

from gattsim.core import codec
from gattsim.core.errors import EncodingError

SUNDAY = datetime(2024, 1, 7, 12, 30, 45)


def test_battery_level_is_one_byte_percent() -> None:
    for level in range(101):
        encoded = codec.battery_level(level)
        assert len(encoded) == 1
        assert encoded[0] == level


@pytest.mark.parametrize("level", [-1, 101, 255])
def test_battery_level_out_of_range_rejected(level: int) -> None:
    with pytest.raises(EncodingError):
        codec.battery_level(level)


def test_encoding_error_is_value_error() -> None:
    with pytest.raises(ValueError):
        codec.uint8(256)


@pytest.mark.parametrize("heart_rate", [0, 60, 72, 255])
def test_heart_rate_short_form(heart_rate: int) -> None:
    assert codec.heart_rate_measurement(heart_rate) == bytes([0x08, heart_rate])


def test_heart_rate_uint16_with_energy_expended() -> None:
    encoded = codec.heart_rate_measurement(300, uint16_format=True, energy_expended_present=True, energy_expended=1234)
    assert encoded == bytes.fromhex("092c01d204")


def test_indoor_bike_data_reference_frame() -> None:
    frame = codec.indoor_bike_data(30.0, 90.0, 200, 140, 1000)
    assert frame == bytes.fromhex("3601b80bb400c8008ce80300")
    assert len(frame) == 12
    assert int.from_bytes(frame[0:2], "little") == 0x0136
    assert int.from_bytes(frame[2:4], "little") == 3000
    assert int.from_bytes(frame[4:6], "little") == 180
    assert int.from_bytes(frame[6:8], "little") == 200
    assert frame[8] == 140
    assert int.from_bytes(frame[9:12], "little") == 1000


def test_treadmill_data_carries_incline_in_tenths() -> None:
    assert codec.treadmill_data(10.0, 2.5, 150, 120, 500) == bytes.fromhex("0c21e80319009600" "78f40100")


def test_cross_trainer_flags() -> None:
    frame = codec.cross_trainer_data(8.0, 60.0, 120, 130, 0)
    assert frame[:2] == bytes.fromhex("0c09")
    assert len(frame) == 12


def test_fitness_distance_limited_to_24_bits() -> None:
    with pytest.raises(EncodingError):
        codec.indoor_bike_data(30.0, 90.0, 200, 140, 0x1000000)


def test_temperature_measurement_float32() -> None:
    assert codec.temperature_measurement(37.0) == b"\x00" + struct.pack("<f", 37.0)


@pytest.mark.parametrize(("sunday_zero_based", "iso"), [(0, 7), (1, 1), (3, 3), (6, 6)])
def test_iso_day_of_week(sunday_zero_based: int, iso: int) -> None:
    assert codec.iso_day_of_week(sunday_zero_based) == iso


def test_current_time_layout() -> None:
    assert codec.current_time(SUNDAY) == bytes.fromhex("e80701070c1e2d" "07" "00" "01")
    assert len(codec.current_time(SUNDAY, adjust_reason=None)) == 9


def test_blood_pressure_with_pulse_rate() -> None:
    encoded = codec.blood_pressure_measurement(120, 80, 93, pulse_rate=72)
    assert encoded == bytes.fromhex("04" "7800" "5000" "5d00" "4800")


def test_blood_pressure_fields_truncate_to_integers() -> None:
    encoded = codec.blood_pressure_measurement(120.9, 80.2, 93.5, kpa=True)
    assert encoded == bytes.fromhex("01" "7800" "5000" "5d00")


def test_glucose_measurement_layout() -> None:
    encoded = codec.glucose_measurement(5, SUNDAY, 100, time_offset=0, sample_type=1, sample_location=1)
    assert encoded == bytes.fromhex("03" "0500" "e80701070c1e2d" "0000" "6400" "11")


def test_glucose_minimal_layout() -> None:
    encoded = codec.glucose_measurement(1, SUNDAY, 95, mmol_per_l=True)
    assert encoded == bytes.fromhex("04" "0100" "e80701070c1e2d" "5f00")


def test_glucose_type_without_location_rejected() -> None:
    with pytest.raises(EncodingError):
        codec.glucose_measurement(1, SUNDAY, 100, sample_type=1)


def test_environmental_sensing_values() -> None:
    assert codec.es_temperature(21.5) == struct.pack("<h", 2150)
    assert codec.es_humidity(45.25) == struct.pack("<H", 4525)
    assert codec.es_pressure(1013.25) == struct.pack("<I", 1013250)
    assert codec.es_wind_chill(-3) == struct.pack("<b", -3)
    with pytest.raises(EncodingError):
        codec.es_humidity(100.5)


def test_weight_measurement_resolution() -> None:
    assert codec.weight_measurement(70.0) == b"\x00" + struct.pack("<H", 14000)


def test_control_point_and_racp_responses() -> None:
    assert codec.control_point_response(0x04, codec.CP_RESULT_SUCCESS) == bytes.fromhex("800401")
    assert codec.racp_response(0x01, codec.RACP_NO_RECORDS_FOUND) == bytes.fromhex("06000106")
    assert codec.racp_number_of_records(0) == bytes.fromhex("05000000")


def test_valid_range_and_measurement_interval() -> None:
    assert codec.valid_range_uint16(1, 60) == bytes.fromhex("01003c00")
    assert codec.measurement_interval(5) == bytes.fromhex("0500")
