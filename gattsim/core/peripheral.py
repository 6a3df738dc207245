"""Composition root for a simulated peripheral and the host callback surface."""

from __future__ import annotations

import logging
import random
import threading
from collections.abc import Callable
from datetime import datetime
from typing import Any

from gattsim.core.catalog import GattCatalog, build_catalog
from gattsim.core.dispatcher import CommandDispatcher
from gattsim.core.errors import TransportError
from gattsim.core.model import AttStatus, Characteristic, Descriptor, PeripheralState, Profile
from gattsim.core.registration import RegistrationQueue
from gattsim.core.simulation import DeferredCalls, SimulationScheduler, SimulationState, build_generators
from gattsim.core.subscriptions import Notifier, SubscriptionRegistry
from gattsim.core.uuids import short_name
from gattsim.transports.base import HostStack

LOGGER = logging.getLogger(__name__)

StatusListener = Callable[[str], None]


class Peripheral:
    """One simulated device: its catalog, subscriptions, registration queue and generators.

    Host stacks call the ``on_*`` methods from their own threads. Every outbound
    operation goes through the ``HostStack`` passed in.
    """

    def __init__(
        self,
        host: HostStack,
        profile: Profile,
        catalog: GattCatalog | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = datetime.now,
        status_listener: StatusListener | None = None,
    ) -> None:
        self.host = host
        self.profile = profile
        self.catalog = catalog or build_catalog(profile.device_info, now=clock())
        self.registry = SubscriptionRegistry()
        self.notifier = Notifier(self.registry, host)
        self.registration = RegistrationQueue(host)
        self.sim_state = SimulationState()
        self.deferred = DeferredCalls()
        rand = rng or random.Random()
        self.dispatcher = CommandDispatcher(
            self.catalog,
            self.registry,
            self.notifier,
            self.sim_state,
            self.deferred,
            history_reply_delay_s=profile.simulation.history_reply_delay_s,
            firmware=profile.device_info.firmware,
            rng=rand,
            clock=clock,
        )
        self.scheduler = SimulationScheduler(
            build_generators(
                self.catalog,
                self.notifier,
                self.sim_state,
                profile.simulation.generators,
                rng=rand,
                clock=clock,
            )
        )
        self._status_listener = status_listener
        self._lock = threading.Lock()
        self._handle: Any = None
        self._auto_start: threading.Timer | None = None

    @property
    def handle(self) -> Any:
        with self._lock:
            return self._handle

    @property
    def registration_settled(self) -> bool:
        """True once nothing is queued or awaiting a result."""
        return self.registration.idle and not self.registration.pending

    @property
    def failed_services(self) -> list[str]:
        return list(self.registration.failed)

    @property
    def state(self) -> PeripheralState:
        return PeripheralState.SIMULATING if self.scheduler.running else PeripheralState.IDLE

    # Lifecycle

    def open_server(self) -> bool:
        with self._lock:
            if self._handle is not None:
                LOGGER.warning("GATT server already open; ignoring")
                return False
        try:
            handle = self.host.open_server()
        except TransportError as exc:
            LOGGER.error("Could not open GATT server: %s", exc)
            self._status(f"Could not open GATT server: {exc}")
            return False
        with self._lock:
            self._handle = handle
        self.notifier.handle = handle
        self.registration.attach(handle)
        self._status("GATT server open")
        return True

    def register_all_services(self) -> None:
        if self.handle is None:
            LOGGER.warning("Registering services before the server is open; they will wait in the queue")
        self.registration.enqueue_all(self.catalog.services())

    def start(self) -> bool:
        started = self.scheduler.start()
        if started:
            self._status("Simulation started")
        return started

    def stop(self) -> bool:
        self._cancel_auto_start()
        stopped = self.scheduler.stop()
        if stopped:
            self._status("Simulation stopped")
        return stopped

    def close(self) -> None:
        self.stop()
        self.deferred.cancel_all()
        with self._lock:
            handle, self._handle = self._handle, None
        self.notifier.handle = None
        self.registration.detach()
        if handle is None:
            return
        try:
            self.host.close_server(handle)
        except TransportError as exc:
            LOGGER.warning("Error while closing GATT server: %s", exc)
        self._status("GATT server closed")

    # Host callbacks

    def on_registration_result(self, service_uuid: str, success: bool) -> None:
        if not success:
            self._status(f"Service {short_name(service_uuid)} could not be added")
        self.registration.on_registration_result(service_uuid, success)

    def on_connected(self, device: str) -> None:
        first = self.registry.add_device(device)
        LOGGER.info("%s connected", device)
        self._status(f"Connected: {device}")
        if first and self.profile.simulation.auto_start_on_connect:
            self._schedule_auto_start()

    def on_disconnected(self, device: str) -> None:
        LOGGER.info("%s disconnected", device)
        self._status(f"Disconnected: {device}")
        self._drop_device(device)

    def on_connection_error(self, device: str, status: int) -> None:
        LOGGER.warning("Connection error %d from %s", status, device)
        self._status(f"Connection error {status}: {device}")
        self._drop_device(device)

    def on_characteristic_read(self, device: str, request_id: int, characteristic: Characteristic, offset: int) -> None:
        status, value = self.dispatcher.handle_read(device, characteristic, offset)
        self._respond_read(device, request_id, status, offset, value)

    def on_characteristic_write(
        self,
        device: str,
        request_id: int,
        characteristic: Characteristic,
        value: bytes,
        response_needed: bool,
        offset: int = 0,
    ) -> None:
        result = self.dispatcher.handle_write(device, characteristic, value, offset)
        if response_needed:
            self._ack_write(device, request_id, result.status)
        self.dispatcher.deliver(result)

    def on_descriptor_read(
        self,
        device: str,
        request_id: int,
        characteristic: Characteristic,
        descriptor: Descriptor,
        offset: int,
    ) -> None:
        status, value = self.dispatcher.handle_descriptor_read(device, characteristic, descriptor, offset)
        self._respond_read(device, request_id, status, offset, value)

    def on_descriptor_write(
        self,
        device: str,
        request_id: int,
        characteristic: Characteristic,
        descriptor: Descriptor,
        value: bytes,
        response_needed: bool,
    ) -> None:
        status = self.dispatcher.handle_descriptor_write(device, characteristic, descriptor, value)
        if response_needed:
            self._ack_write(device, request_id, status)

    # Internals

    def _drop_device(self, device: str) -> None:
        if self.registry.remove_device(device) and self.profile.simulation.auto_start_on_connect:
            self.stop()

    def _schedule_auto_start(self) -> None:
        delay = self.profile.simulation.start_delay_s
        LOGGER.info("Starting simulation in %.1fs", delay)
        timer = self.deferred.call_later(delay, self._auto_start_fired)
        with self._lock:
            previous, self._auto_start = self._auto_start, timer
        if previous is not None:
            self.deferred.cancel(previous)

    def _auto_start_fired(self) -> None:
        with self._lock:
            self._auto_start = None
        if self.registry.connected_devices():
            self.start()

    def _cancel_auto_start(self) -> None:
        with self._lock:
            timer, self._auto_start = self._auto_start, None
        if timer is not None:
            self.deferred.cancel(timer)

    def _respond_read(self, device: str, request_id: int, status: AttStatus, offset: int, value: bytes) -> None:
        handle = self.handle
        if handle is None:
            return
        try:
            self.host.send_read_response(handle, device, request_id, status, offset, value)
        except TransportError as exc:
            LOGGER.warning("Failed to answer read %d from %s: %s", request_id, device, exc)

    def _ack_write(self, device: str, request_id: int, status: AttStatus) -> None:
        handle = self.handle
        if handle is None:
            return
        try:
            self.host.send_write_ack(handle, device, request_id, status)
        except TransportError as exc:
            LOGGER.warning("Failed to acknowledge write %d from %s: %s", request_id, device, exc)

    def _status(self, message: str) -> None:
        if self._status_listener is not None:
            self._status_listener(message)
