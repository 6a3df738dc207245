"""Dry-run host stack that logs outbound traffic instead of touching a radio."""

from __future__ import annotations

import itertools
import logging
from typing import TYPE_CHECKING, Any

from gattsim.core.uuids import short_name

if TYPE_CHECKING:
    from gattsim.core.model import AttStatus, Characteristic, Service
    from gattsim.core.peripheral import Peripheral

LOGGER = logging.getLogger(__name__)


class LoggingHostStack:
    """Accepts every service immediately and logs each notification.

    Registration results are reported synchronously from ``submit_service``,
    which exercises the re-entrant path of the registration queue.
    """

    def __init__(self) -> None:
        self._peripheral: Peripheral | None = None
        self._handles = itertools.count(1)

    def bind(self, peripheral: Peripheral) -> None:
        self._peripheral = peripheral

    def open_server(self) -> Any:
        handle = next(self._handles)
        LOGGER.info("[dry-run] GATT server %d opened", handle)
        return handle

    def close_server(self, handle: Any) -> None:
        LOGGER.info("[dry-run] GATT server %d closed", handle)

    def submit_service(self, handle: Any, service: Service) -> None:
        LOGGER.info(
            "[dry-run] Added service %s (%s) with %d characteristic(s)",
            short_name(service.uuid),
            service.name or "unnamed",
            len(service.characteristics),
        )
        if self._peripheral is not None:
            self._peripheral.on_registration_result(service.uuid, True)

    def notify(self, handle: Any, device: str, characteristic: Characteristic, as_indication: bool) -> None:
        LOGGER.info(
            "[dry-run] %s %s -> %s: %s",
            "indicate" if as_indication else "notify",
            short_name(characteristic.uuid),
            device,
            characteristic.value.hex(),
        )

    def send_read_response(
        self,
        handle: Any,
        device: str,
        request_id: int,
        status: AttStatus,
        offset: int,
        value: bytes,
    ) -> None:
        LOGGER.info("[dry-run] read %d -> %s: %s %s", request_id, device, status.name, value.hex())

    def send_write_ack(self, handle: Any, device: str, request_id: int, status: AttStatus) -> None:
        LOGGER.info("[dry-run] write %d -> %s: %s", request_id, device, status.name)
