"""Serialized service registration against a one-at-a-time host stack."""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Iterable
from typing import Any

from gattsim.core.errors import TransportError
from gattsim.core.model import Service
from gattsim.core.uuids import short_name
from gattsim.transports.base import HostStack

LOGGER = logging.getLogger(__name__)


class RegistrationQueue:
    """FIFO of services waiting to be added to the host's GATT server.

    At most one service is submitted at a time. The next one goes out only after
    ``on_registration_result`` reports the outcome of the current one. A failed
    registration drains everything still pending and halts the queue until
    ``reset`` is called, so nothing else is submitted behind a failure.
    """

    def __init__(self, host: HostStack) -> None:
        self._host = host
        self._lock = threading.Lock()
        self._pending: deque[Service] = deque()
        self._in_flight: Service | None = None
        self._handle: Any = None
        self._pumping = False
        self._failed: list[str] = []
        self._halted = False

    @property
    def pending(self) -> tuple[Service, ...]:
        with self._lock:
            return tuple(self._pending)

    @property
    def in_flight(self) -> Service | None:
        with self._lock:
            return self._in_flight

    @property
    def idle(self) -> bool:
        with self._lock:
            return self._in_flight is None

    @property
    def failed(self) -> tuple[str, ...]:
        """UUIDs of services the host rejected or that could not be submitted."""
        with self._lock:
            return tuple(self._failed)

    @property
    def halted(self) -> bool:
        """True after a failure until ``reset`` or ``detach``; enqueues are refused meanwhile."""
        with self._lock:
            return self._halted

    def attach(self, handle: Any) -> None:
        """Make the server handle available and submit anything queued meanwhile."""
        with self._lock:
            self._handle = handle
        self._pump()

    def detach(self) -> None:
        with self._lock:
            dropped = len(self._pending)
            self._handle = None
            self._in_flight = None
            self._pending.clear()
            self._halted = False
        if dropped:
            LOGGER.warning("Server closed with %d service(s) still queued; dropped", dropped)

    def reset(self) -> None:
        with self._lock:
            self._halted = False
            self._failed.clear()

    def enqueue(self, service: Service) -> None:
        self.enqueue_all([service])

    def enqueue_all(self, services: Iterable[Service]) -> None:
        """Queue every service in one step, then start submitting."""
        batch = list(services)
        with self._lock:
            if self._halted:
                LOGGER.warning(
                    "Registration halted after a failure; refusing %d service(s)",
                    len(batch),
                )
                return
            self._pending.extend(batch)
            has_server = self._handle is not None
        if not has_server:
            LOGGER.debug("Queued %d service(s) until a server is open", len(batch))
        self._pump()

    def on_registration_result(self, service_uuid: str, success: bool) -> None:
        with self._lock:
            current = self._in_flight
            if current is None or current.uuid != service_uuid:
                LOGGER.warning(
                    "Ignoring registration result for %s: not in flight",
                    short_name(service_uuid),
                )
                return
            self._in_flight = None

        if success:
            LOGGER.debug("Service %s registered", short_name(service_uuid))
            self._pump()
        else:
            self._fail(current, "host rejected the service")

    def _fail(self, service: Service, reason: str) -> None:
        with self._lock:
            dropped = len(self._pending)
            self._pending.clear()
            self._in_flight = None
            self._failed.append(service.uuid)
            self._halted = True
        LOGGER.error(
            "Registration of service %s failed (%s); dropped %d queued service(s)",
            short_name(service.uuid),
            reason,
            dropped,
        )

    def _pump(self) -> None:
        with self._lock:
            if self._pumping:
                return
            self._pumping = True
        while True:
            with self._lock:
                # The flag is cleared under the same lock as the idle check so a
                # result arriving from another thread cannot be lost in between.
                if self._in_flight is not None or not self._pending or self._handle is None:
                    self._pumping = False
                    return
                service = self._pending.popleft()
                self._in_flight = service
                handle = self._handle
            LOGGER.debug("Submitting service %s", short_name(service.uuid))
            try:
                self._host.submit_service(handle, service)
            except TransportError as exc:
                self._fail(service, str(exc))
            except Exception:
                with self._lock:
                    self._pumping = False
                    self._in_flight = None
                raise
