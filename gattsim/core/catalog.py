"""Static catalog of every service, characteristic and descriptor the simulator exposes."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime

from gattsim.core import codec
from gattsim.core import uuids as u
from gattsim.core.errors import CatalogLookupError
from gattsim.core.model import Capability, Characteristic, Descriptor, DeviceInfo, Service

READ = Capability.READ
WRITE = Capability.WRITE
WRITE_NR = Capability.WRITE_WITHOUT_RESPONSE
NOTIFY = Capability.NOTIFY
INDICATE = Capability.INDICATE

MEASUREMENT_INTERVAL_RANGE = (1, 60)
RESISTANCE_RANGE = (0, 255)

# Fitness Machine Feature bits: cadence, total distance, resistance level,
# heart rate, power measurement. Target setting: resistance level.
_FTMS_MACHINE_FEATURES = 0x00004416
_FTMS_TARGET_FEATURES = 0x00000004


class GattCatalog:
    """In-memory catalog of services; lookups are by (service UUID, characteristic UUID)."""

    def __init__(self, services: list[Service]) -> None:
        self._services = tuple(services)
        self._index: dict[tuple[str, str], Characteristic] = {}
        for service in self._services:
            for characteristic in service.characteristics:
                self._index[characteristic.key] = characteristic

    def services(self) -> tuple[Service, ...]:
        return self._services

    def service(self, service_uuid: str) -> Service:
        for service in self._services:
            if service.uuid == service_uuid:
                return service
        raise CatalogLookupError(f"Unknown service {u.short_name(service_uuid)}")

    def find(self, service_uuid: str, characteristic_uuid: str) -> Characteristic:
        characteristic = self._index.get((service_uuid, characteristic_uuid))
        if characteristic is None:
            raise CatalogLookupError(
                f"Unknown characteristic {u.short_name(characteristic_uuid)} "
                f"in service {u.short_name(service_uuid)}"
            )
        return characteristic

    def get_value(self, service_uuid: str, characteristic_uuid: str) -> bytes:
        return self.find(service_uuid, characteristic_uuid).value

    def set_value(self, service_uuid: str, characteristic_uuid: str, value: bytes) -> None:
        self.find(service_uuid, characteristic_uuid).set_value(value)

    def __iter__(self) -> Iterator[Service]:
        return iter(self._services)

    def __len__(self) -> int:
        return len(self._services)


def _char(
    service_uuid: str,
    uuid: str,
    capabilities: Capability,
    value: bytes = b"",
    *descriptors: Descriptor,
) -> Characteristic:
    return Characteristic(
        uuid=uuid,
        service_uuid=service_uuid,
        capabilities=capabilities,
        initial_value=value,
        descriptors=tuple(descriptors),
    )


def _service(uuid: str, name: str, *characteristics: Characteristic) -> Service:
    return Service(uuid=uuid, name=name, characteristics=tuple(characteristics))


def _battery_service() -> Service:
    s = u.BATTERY_SERVICE
    return _service(
        s,
        "Battery",
        _char(
            s,
            u.BATTERY_LEVEL,
            READ | NOTIFY,
            codec.battery_level(80),
            Descriptor(
                u.CHARACTERISTIC_USER_DESCRIPTION,
                codec.utf8_string("The current charge level of a battery."),
            ),
        ),
    )


def _heart_rate_service() -> Service:
    s = u.HEART_RATE_SERVICE
    return _service(
        s,
        "Heart Rate",
        _char(s, u.HEART_RATE_MEASUREMENT, NOTIFY, codec.heart_rate_measurement(60)),
        # 0x01: chest
        _char(s, u.BODY_SENSOR_LOCATION, READ, b"\x01"),
        _char(s, u.HEART_RATE_CONTROL_POINT, WRITE),
    )


def _health_thermometer_service() -> Service:
    s = u.HEALTH_THERMOMETER_SERVICE
    low, high = MEASUREMENT_INTERVAL_RANGE
    return _service(
        s,
        "Health Thermometer",
        _char(s, u.TEMPERATURE_MEASUREMENT, INDICATE, codec.temperature_measurement(37.0)),
        # 0x02: body
        _char(s, u.TEMPERATURE_TYPE, READ, b"\x02"),
        _char(
            s,
            u.MEASUREMENT_INTERVAL,
            READ | WRITE,
            codec.measurement_interval(5),
            Descriptor(u.VALID_RANGE, codec.valid_range_uint16(low, high)),
        ),
    )


def _device_information_service(info: DeviceInfo) -> Service:
    s = u.DEVICE_INFORMATION_SERVICE
    return _service(
        s,
        "Device Information",
        _char(s, u.MANUFACTURER_NAME_STRING, READ, codec.utf8_string(info.manufacturer)),
        _char(s, u.MODEL_NUMBER_STRING, READ, codec.utf8_string(info.model)),
        _char(s, u.SERIAL_NUMBER_STRING, READ, codec.utf8_string(info.serial)),
        _char(s, u.FIRMWARE_REVISION_STRING, READ, codec.utf8_string(info.firmware)),
    )


def _current_time_service(now: datetime) -> Service:
    s = u.CURRENT_TIME_SERVICE
    return _service(
        s,
        "Current Time",
        _char(s, u.CURRENT_TIME, READ | NOTIFY, codec.current_time(now)),
        _char(s, u.LOCAL_TIME_INFORMATION, READ, codec.local_time_information(0, 0)),
    )


def _blood_pressure_service() -> Service:
    s = u.BLOOD_PRESSURE_SERVICE
    return _service(
        s,
        "Blood Pressure",
        _char(s, u.BLOOD_PRESSURE_MEASUREMENT, INDICATE, codec.blood_pressure_measurement(120, 80, 93, 70)),
        _char(s, u.BLOOD_PRESSURE_FEATURE, READ, codec.uint16(0x0000)),
    )


def _glucose_service(now: datetime) -> Service:
    s = u.GLUCOSE_SERVICE
    return _service(
        s,
        "Glucose",
        _char(s, u.GLUCOSE_MEASUREMENT, INDICATE, codec.glucose_measurement(0, now, 100, sample_type=1, sample_location=1)),
        _char(s, u.GLUCOSE_FEATURE, READ, codec.uint16(0x0000)),
        _char(s, u.RECORD_ACCESS_CONTROL_POINT, WRITE | INDICATE),
    )


def _weight_scale_service() -> Service:
    s = u.WEIGHT_SCALE_SERVICE
    return _service(
        s,
        "Weight Scale",
        _char(s, u.WEIGHT_MEASUREMENT, INDICATE, codec.weight_measurement(70.0)),
        _char(s, u.WEIGHT_SCALE_FEATURE, READ, codec.uint32(0)),
    )


def _body_composition_service() -> Service:
    s = u.BODY_COMPOSITION_SERVICE
    return _service(
        s,
        "Body Composition",
        _char(s, u.BODY_COMPOSITION_MEASUREMENT, INDICATE, codec.body_composition_measurement(20.0)),
        _char(s, u.BODY_COMPOSITION_FEATURE, READ, codec.uint32(0)),
    )


def _pulse_oximeter_service() -> Service:
    s = u.PULSE_OXIMETER_SERVICE
    return _service(
        s,
        "Pulse Oximeter",
        _char(s, u.PLX_CONTINUOUS_MEASUREMENT, NOTIFY, codec.plx_continuous_measurement(98, 70)),
    )


def _fitness_machine_service() -> Service:
    s = u.FITNESS_MACHINE_SERVICE
    low, high = RESISTANCE_RANGE
    return _service(
        s,
        "Fitness Machine",
        _char(s, u.FITNESS_MACHINE_FEATURE, READ, codec.fitness_machine_feature(_FTMS_MACHINE_FEATURES, _FTMS_TARGET_FEATURES)),
        _char(s, u.INDOOR_BIKE_DATA, NOTIFY, codec.indoor_bike_data(0, 0, 0, 0, 0)),
        _char(s, u.TREADMILL_DATA, NOTIFY, codec.treadmill_data(0, 0, 0, 0, 0)),
        _char(s, u.CROSS_TRAINER_DATA, NOTIFY, codec.cross_trainer_data(0, 0, 0, 0, 0)),
        _char(s, u.SUPPORTED_RESISTANCE_LEVEL_RANGE, READ, codec.supported_resistance_level_range(low, high, 1)),
        _char(s, u.FITNESS_MACHINE_CONTROL_POINT, WRITE | INDICATE),
    )


def _environmental_sensing_service() -> Service:
    s = u.ENVIRONMENTAL_SENSING_SERVICE
    return _service(
        s,
        "Environmental Sensing",
        _char(s, u.ES_TEMPERATURE, READ | NOTIFY, codec.es_temperature(22.0)),
        _char(s, u.HUMIDITY, READ | NOTIFY, codec.es_humidity(45.0)),
        _char(s, u.PRESSURE, READ | NOTIFY, codec.es_pressure(1013.25)),
        _char(s, u.WIND_CHILL, READ | NOTIFY, codec.es_wind_chill(20)),
    )


def _running_speed_and_cadence_service() -> Service:
    s = u.RUNNING_SPEED_AND_CADENCE_SERVICE
    return _service(
        s,
        "Running Speed and Cadence",
        _char(s, u.RSC_MEASUREMENT, NOTIFY, codec.rsc_measurement(0, 0)),
        _char(s, u.RSC_FEATURE, READ, codec.uint16(0x0000)),
    )


def _cycling_power_service() -> Service:
    s = u.CYCLING_POWER_SERVICE
    return _service(
        s,
        "Cycling Power",
        _char(s, u.CYCLING_POWER_MEASUREMENT, NOTIFY, codec.cycling_power_measurement(0)),
        _char(s, u.CYCLING_POWER_FEATURE, READ, codec.uint32(0)),
    )


def _tx_power_service() -> Service:
    s = u.TX_POWER_SERVICE
    return _service(s, "Tx Power", _char(s, u.TX_POWER_LEVEL, READ, codec.tx_power_level(0)))


def _immediate_alert_service() -> Service:
    s = u.IMMEDIATE_ALERT_SERVICE
    return _service(s, "Immediate Alert", _char(s, u.ALERT_LEVEL, WRITE_NR, b"\x00"))


def _link_loss_service() -> Service:
    s = u.LINK_LOSS_SERVICE
    return _service(s, "Link Loss", _char(s, u.ALERT_LEVEL, READ | WRITE, b"\x00"))


def _scale_service() -> Service:
    s = u.SCALE_SERVICE
    return _service(
        s,
        "Body Scale (proprietary)",
        _char(s, u.SCALE_WRITE, WRITE | WRITE_NR),
        _char(s, u.SCALE_NOTIFY, NOTIFY),
    )


def build_catalog(device_info: DeviceInfo, now: datetime | None = None) -> GattCatalog:
    """Build the full catalog with initial values; registration order follows this list."""
    moment = now or datetime.now()
    return GattCatalog(
        [
            _battery_service(),
            _heart_rate_service(),
            _health_thermometer_service(),
            _device_information_service(device_info),
            _current_time_service(moment),
            _blood_pressure_service(),
            _glucose_service(moment),
            _weight_scale_service(),
            _body_composition_service(),
            _pulse_oximeter_service(),
            _fitness_machine_service(),
            _environmental_sensing_service(),
            _running_speed_and_cadence_service(),
            _cycling_power_service(),
            _tx_power_service(),
            _immediate_alert_service(),
            _link_loss_service(),
            _scale_service(),
        ]
    )
