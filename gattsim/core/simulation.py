"""Periodic measurement generators and the scheduler that runs them."""

from __future__ import annotations

import logging
import random
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from gattsim.core import codec, scale_frames
from gattsim.core import uuids as u

if TYPE_CHECKING:
    from gattsim.core.catalog import GattCatalog
    from gattsim.core.model import Characteristic, GeneratorSpec
    from gattsim.core.subscriptions import Notifier

LOGGER = logging.getLogger(__name__)

GENERATOR_NAMES = (
    "battery",
    "heart_rate",
    "temperature",
    "blood_pressure",
    "glucose",
    "weight",
    "pulse_oximeter",
    "indoor_bike",
    "treadmill",
    "cross_trainer",
    "running",
    "cycling_power",
    "environment",
    "current_time",
    "scale_realtime",
)

_MAX_DISTANCE_M = 0xFFFFFF
_STOP_JOIN_TIMEOUT_S = 2.0


@dataclass
class SimulationState:
    """Values shared between the command dispatcher and the generators."""

    target_resistance: int = 0
    energy_expended_kj: int = 0
    glucose_sequence: int = 0
    scale_unit: int = scale_frames.UNIT_KG
    machine_running: bool = True
    distances_m: dict[str, int] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def set_target_resistance(self, level: int) -> None:
        with self._lock:
            self.target_resistance = level

    def resistance(self) -> int:
        with self._lock:
            return self.target_resistance

    def reset(self) -> None:
        with self._lock:
            self.target_resistance = 0
            self.machine_running = True
            self.distances_m.clear()

    def set_scale_unit(self, unit: int) -> None:
        with self._lock:
            self.scale_unit = unit

    def unit(self) -> int:
        with self._lock:
            return self.scale_unit

    def set_machine_running(self, running: bool) -> None:
        with self._lock:
            self.machine_running = running

    def is_machine_running(self) -> bool:
        with self._lock:
            return self.machine_running

    def add_energy(self, kilojoules: int) -> int:
        with self._lock:
            self.energy_expended_kj = min(self.energy_expended_kj + kilojoules, 0xFFFF)
            return self.energy_expended_kj

    def reset_energy(self) -> None:
        with self._lock:
            self.energy_expended_kj = 0

    def next_glucose_sequence(self) -> int:
        with self._lock:
            self.glucose_sequence = (self.glucose_sequence + 1) & 0xFFFF
            return self.glucose_sequence

    def advance_distance(self, machine: str, meters: int) -> int:
        with self._lock:
            total = (self.distances_m.get(machine, 0) + meters) % (_MAX_DISTANCE_M + 1)
            self.distances_m[machine] = total
            return total


class SimulationGenerator:
    """A named periodic task that produces one round of values per tick."""

    def __init__(self, name: str, period_s: float, tick: Callable[[], None]) -> None:
        self.name = name
        self.period_s = period_s
        self._tick = tick

    def run_once(self) -> bool:
        """Run one tick; failures are logged and reported as False."""
        try:
            self._tick()
        except Exception:
            LOGGER.exception("Generator '%s' tick failed", self.name)
            return False
        return True

    def __repr__(self) -> str:
        return f"SimulationGenerator({self.name!r}, period_s={self.period_s})"


class SimulationScheduler:
    """Runs every generator on its own thread until a shared stop token is set.

    A fresh token is created per start so a thread still unwinding from an
    earlier stop can never be revived. Sleeping generators wake as soon as the
    token is set.
    """

    def __init__(self, generators: list[SimulationGenerator]) -> None:
        self.generators = list(generators)
        self._lock = threading.Lock()
        self._token: threading.Event | None = None
        self._threads: list[threading.Thread] = []

    @property
    def running(self) -> bool:
        with self._lock:
            return self._token is not None

    def start(self) -> bool:
        with self._lock:
            if self._token is not None:
                LOGGER.warning("Simulation already running")
                return False
            token = threading.Event()
            self._token = token
            self._threads = [
                threading.Thread(
                    target=self._run,
                    args=(generator, token),
                    name=f"gattsim-{generator.name}",
                    daemon=True,
                )
                for generator in self.generators
            ]
            # Started under the lock so a concurrent stop never joins an unstarted thread.
            for thread in self._threads:
                thread.start()
            count = len(self._threads)
        LOGGER.info("Simulation started with %d generator(s)", count)
        return True

    def stop(self, timeout_s: float = _STOP_JOIN_TIMEOUT_S) -> bool:
        with self._lock:
            token, self._token = self._token, None
            threads, self._threads = self._threads, []
        if token is None:
            return False
        token.set()
        current = threading.current_thread()
        for thread in threads:
            if thread is not current:
                thread.join(timeout_s)
        LOGGER.info("Simulation stopped")
        return True

    @staticmethod
    def _run(generator: SimulationGenerator, token: threading.Event) -> None:
        while not token.is_set():
            generator.run_once()
            if token.wait(generator.period_s):
                break


class DeferredCalls:
    """Fire-and-forget delayed callbacks, cancelled together on teardown."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._timers: set[threading.Timer] = set()

    def call_later(self, delay_s: float, func: Callable[[], None]) -> threading.Timer:
        def _fire() -> None:
            with self._lock:
                self._timers.discard(timer)
            try:
                func()
            except Exception:
                LOGGER.exception("Deferred call %r failed", func)

        timer = threading.Timer(delay_s, _fire)
        timer.daemon = True
        with self._lock:
            self._timers.add(timer)
        timer.start()
        return timer

    def cancel(self, timer: threading.Timer) -> None:
        with self._lock:
            self._timers.discard(timer)
        timer.cancel()

    def cancel_all(self) -> None:
        with self._lock:
            timers, self._timers = self._timers, set()
        for timer in timers:
            timer.cancel()

    def __len__(self) -> int:
        with self._lock:
            return len(self._timers)


def build_generators(
    catalog: GattCatalog,
    notifier: Notifier,
    state: SimulationState,
    specs: dict[str, GeneratorSpec],
    rng: random.Random | None = None,
    clock: Callable[[], datetime] = datetime.now,
) -> list[SimulationGenerator]:
    """Create the enabled generators named in ``specs``, in ``GENERATOR_NAMES`` order."""
    rand = rng or random.Random()

    def publish(characteristic: Characteristic, value: bytes) -> None:
        characteristic.set_value(value)
        # Indicate-only characteristics are indicated, everything else notified.
        notifier.dispatch(characteristic, as_indication=characteristic.indicatable and not characteristic.notifiable)

    def char(service_uuid: str, characteristic_uuid: str) -> Characteristic:
        return catalog.find(service_uuid, characteristic_uuid)

    battery = char(u.BATTERY_SERVICE, u.BATTERY_LEVEL)
    heart_rate = char(u.HEART_RATE_SERVICE, u.HEART_RATE_MEASUREMENT)
    temperature = char(u.HEALTH_THERMOMETER_SERVICE, u.TEMPERATURE_MEASUREMENT)
    blood_pressure = char(u.BLOOD_PRESSURE_SERVICE, u.BLOOD_PRESSURE_MEASUREMENT)
    glucose = char(u.GLUCOSE_SERVICE, u.GLUCOSE_MEASUREMENT)
    weight = char(u.WEIGHT_SCALE_SERVICE, u.WEIGHT_MEASUREMENT)
    body_composition = char(u.BODY_COMPOSITION_SERVICE, u.BODY_COMPOSITION_MEASUREMENT)
    plx = char(u.PULSE_OXIMETER_SERVICE, u.PLX_CONTINUOUS_MEASUREMENT)
    indoor_bike = char(u.FITNESS_MACHINE_SERVICE, u.INDOOR_BIKE_DATA)
    treadmill = char(u.FITNESS_MACHINE_SERVICE, u.TREADMILL_DATA)
    cross_trainer = char(u.FITNESS_MACHINE_SERVICE, u.CROSS_TRAINER_DATA)
    rsc = char(u.RUNNING_SPEED_AND_CADENCE_SERVICE, u.RSC_MEASUREMENT)
    cycling_power = char(u.CYCLING_POWER_SERVICE, u.CYCLING_POWER_MEASUREMENT)
    es_temperature = char(u.ENVIRONMENTAL_SENSING_SERVICE, u.ES_TEMPERATURE)
    humidity = char(u.ENVIRONMENTAL_SENSING_SERVICE, u.HUMIDITY)
    pressure = char(u.ENVIRONMENTAL_SENSING_SERVICE, u.PRESSURE)
    wind_chill = char(u.ENVIRONMENTAL_SENSING_SERVICE, u.WIND_CHILL)
    current_time = char(u.CURRENT_TIME_SERVICE, u.CURRENT_TIME)
    scale_notify = char(u.SCALE_SERVICE, u.SCALE_NOTIFY)

    def period(name: str) -> float:
        return specs[name].period_s

    def distance_step(machine: str, speed_kmh: float) -> int:
        return state.advance_distance(machine, round(speed_kmh / 3.6 * period(machine)))

    def biased_power(low: int, high: int) -> int:
        return min(rand.randint(low, high) + state.resistance() // 2, 0x7FFF)

    def tick_battery() -> None:
        publish(battery, codec.battery_level(rand.randint(20, 99)))

    def tick_heart_rate() -> None:
        energy = state.add_energy(1)
        publish(
            heart_rate,
            codec.heart_rate_measurement(
                rand.randint(60, 74),
                energy_expended_present=True,
                energy_expended=energy,
            ),
        )

    def tick_temperature() -> None:
        publish(temperature, codec.temperature_measurement(36.5 + rand.random()))

    def tick_blood_pressure() -> None:
        systolic = rand.randint(110, 130)
        diastolic = rand.randint(70, 85)
        mean_arterial = round(diastolic + (systolic - diastolic) / 3)
        publish(
            blood_pressure,
            codec.blood_pressure_measurement(systolic, diastolic, mean_arterial, pulse_rate=rand.randint(60, 80)),
        )

    def tick_glucose() -> None:
        publish(
            glucose,
            codec.glucose_measurement(
                state.next_glucose_sequence(),
                clock(),
                rand.randint(80, 140),
                time_offset=0,
                sample_type=1,
                sample_location=1,
            ),
        )

    def tick_weight() -> None:
        publish(weight, codec.weight_measurement(round(rand.uniform(60.0, 80.0), 2)))
        publish(body_composition, codec.body_composition_measurement(round(rand.uniform(15.0, 25.0), 1)))

    def tick_pulse_oximeter() -> None:
        publish(plx, codec.plx_continuous_measurement(rand.randint(95, 99), rand.randint(60, 75)))

    def tick_indoor_bike() -> None:
        if not state.is_machine_running():
            return
        speed = rand.uniform(20.0, 35.0)
        publish(
            indoor_bike,
            codec.indoor_bike_data(
                speed,
                rand.uniform(70.0, 95.0),
                biased_power(100, 200),
                rand.randint(120, 160),
                distance_step("indoor_bike", speed),
            ),
        )

    def tick_treadmill() -> None:
        if not state.is_machine_running():
            return
        speed = rand.uniform(6.0, 12.0)
        publish(
            treadmill,
            codec.treadmill_data(
                speed,
                round(rand.uniform(0.0, 5.0), 1),
                rand.randint(50, 150),
                rand.randint(110, 150),
                distance_step("treadmill", speed),
            ),
        )

    def tick_cross_trainer() -> None:
        if not state.is_machine_running():
            return
        speed = rand.uniform(5.0, 10.0)
        publish(
            cross_trainer,
            codec.cross_trainer_data(
                speed,
                rand.uniform(50.0, 70.0),
                biased_power(80, 180),
                rand.randint(110, 150),
                distance_step("cross_trainer", speed),
            ),
        )

    def tick_running() -> None:
        publish(rsc, codec.rsc_measurement(rand.uniform(2.5, 4.0), rand.randint(150, 180)))

    def tick_cycling_power() -> None:
        publish(cycling_power, codec.cycling_power_measurement(biased_power(100, 250)))

    def tick_environment() -> None:
        publish(es_temperature, codec.es_temperature(rand.uniform(18.0, 26.0)))
        publish(humidity, codec.es_humidity(rand.uniform(30.0, 60.0)))
        publish(pressure, codec.es_pressure(rand.uniform(990.0, 1030.0)))
        publish(wind_chill, codec.es_wind_chill(rand.randint(-5, 20)))

    def tick_current_time() -> None:
        publish(current_time, codec.current_time(clock()))

    def tick_scale_realtime() -> None:
        publish(
            scale_notify,
            scale_frames.realtime_impedance_frame(
                weight_kg=round(rand.uniform(60.0, 80.0), 2),
                impedance_20k=rand.randint(400, 600),
                impedance_100k=rand.randint(350, 550),
                heart_rate=rand.randint(60, 90),
                unit=state.unit(),
                user_id=1,
                timestamp=int(clock().timestamp()),
            ),
        )

    ticks: dict[str, Callable[[], None]] = {
        "battery": tick_battery,
        "heart_rate": tick_heart_rate,
        "temperature": tick_temperature,
        "blood_pressure": tick_blood_pressure,
        "glucose": tick_glucose,
        "weight": tick_weight,
        "pulse_oximeter": tick_pulse_oximeter,
        "indoor_bike": tick_indoor_bike,
        "treadmill": tick_treadmill,
        "cross_trainer": tick_cross_trainer,
        "running": tick_running,
        "cycling_power": tick_cycling_power,
        "environment": tick_environment,
        "current_time": tick_current_time,
        "scale_realtime": tick_scale_realtime,
    }

    return [
        SimulationGenerator(name, specs[name].period_s, ticks[name])
        for name in GENERATOR_NAMES
        if name in specs and specs[name].enabled
    ]
