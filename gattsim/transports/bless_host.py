"""Real GATT server on top of ``bless``.

bless owns an asyncio loop; it runs here on a dedicated daemon thread and the
synchronous ``HostStack`` calls hop onto it with ``run_coroutine_threadsafe``.
bless exposes neither connection events nor per-client CCCD state, so the
platform's subscribers are presented to the peripheral as a single peer.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import itertools
import logging
import threading
from collections.abc import Coroutine
from typing import TYPE_CHECKING, Any

from gattsim.core.errors import (
    CatalogLookupError,
    TransportConnectError,
    TransportSendError,
    TransportTimeoutError,
)
from gattsim.core.model import AttStatus, Capability
from gattsim.core.uuids import normalize_uuid, short_name

if TYPE_CHECKING:
    from gattsim.core.model import Characteristic, Service
    from gattsim.core.peripheral import Peripheral

LOGGER = logging.getLogger(__name__)

AGGREGATE_PEER = "bless-subscribers"


class BlessHostStack:
    def __init__(self, name: str, *, timeout_s: float = 10.0) -> None:
        self.name = name
        self.timeout_s = timeout_s
        self._peripheral: Peripheral | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._request_ids = itertools.count(1)
        self._responses: dict[int, tuple[AttStatus, bytes]] = {}
        self._responses_lock = threading.Lock()

    def bind(self, peripheral: Peripheral) -> None:
        self._peripheral = peripheral

    # HostStack

    def open_server(self) -> Any:
        try:
            from bless import BlessServer  # type: ignore
        except Exception as exc:  # pragma: no cover - import failure path
            raise TransportConnectError(
                "Peripheral mode requires 'bless'. Install dependency and retry."
            ) from exc

        loop = asyncio.new_event_loop()
        thread = threading.Thread(target=loop.run_forever, name="gattsim-bless", daemon=True)
        thread.start()
        self._loop = loop
        self._thread = thread

        async def _create() -> Any:
            server = BlessServer(name=self.name, loop=loop)
            server.read_request_func = self._on_read
            server.write_request_func = self._on_write
            return server

        return self._call(_create(), TransportConnectError, "open GATT server")

    def close_server(self, handle: Any) -> None:
        try:
            self._call(handle.stop(), TransportSendError, "stop GATT server")
        finally:
            loop, self._loop = self._loop, None
            if loop is not None:
                loop.call_soon_threadsafe(loop.stop)
            if self._thread is not None:
                self._thread.join(self.timeout_s)
                self._thread = None

    def submit_service(self, handle: Any, service: Service) -> None:
        loop = self._require_loop()

        async def _add() -> None:
            try:
                await handle.add_new_service(service.uuid)
                for characteristic in service.characteristics:
                    properties, permissions = _bless_flags(characteristic.capabilities)
                    await handle.add_new_characteristic(
                        service.uuid,
                        characteristic.uuid,
                        properties,
                        bytearray(characteristic.value) or None,
                        permissions,
                    )
            except Exception as exc:
                LOGGER.error("bless rejected service %s: %s", short_name(service.uuid), exc)
                self._report(service.uuid, False)
                return
            self._report(service.uuid, True)

        # The result is reported from the loop thread, never from inside this call.
        asyncio.run_coroutine_threadsafe(_add(), loop)

    def notify(self, handle: Any, device: str, characteristic: Characteristic, as_indication: bool) -> None:
        if threading.current_thread() is self._thread:
            # Replies to a write are pushed from inside the bless callback.
            try:
                _update_value(handle, characteristic)
            except TransportSendError:
                raise
            except Exception as exc:
                raise TransportSendError(f"Failed to update {short_name(characteristic.uuid)}: {exc}") from exc
            return

        # Handed to the loop without waiting: callers hold the subscription lock, and
        # a bless callback on the loop thread may be waiting for that same lock.
        try:
            loop = self._require_loop()
        except TransportConnectError as exc:
            raise TransportSendError(str(exc)) from exc
        value = characteristic.value
        loop.call_soon_threadsafe(_update_logged, handle, characteristic, value)

    def send_read_response(
        self,
        handle: Any,
        device: str,
        request_id: int,
        status: AttStatus,
        offset: int,
        value: bytes,
    ) -> None:
        with self._responses_lock:
            self._responses[request_id] = (status, value)

    def send_write_ack(self, handle: Any, device: str, request_id: int, status: AttStatus) -> None:
        # bless acknowledges writes itself and has no way to return an ATT error.
        if status is not AttStatus.SUCCESS:
            LOGGER.warning("Write %d answered with %s; bless cannot forward ATT errors", request_id, status.name)

    # Advertising

    def advertise(self, handle: Any) -> None:
        """Start advertising. Call once every service has been registered."""
        self._call(handle.start(), TransportConnectError, "start advertising")
        LOGGER.info("Advertising as %r", self.name)

    # bless callbacks, invoked on the loop thread

    def _on_read(self, characteristic: Any, **kwargs: Any) -> bytearray:
        peripheral = self._peripheral
        target = self._lookup(characteristic)
        if peripheral is None or target is None:
            return characteristic.value or bytearray()
        request_id = next(self._request_ids)
        peripheral.on_characteristic_read(AGGREGATE_PEER, request_id, target, 0)
        with self._responses_lock:
            status, value = self._responses.pop(request_id, (AttStatus.SUCCESS, target.value))
        if status is not AttStatus.SUCCESS:
            LOGGER.warning("Read of %s answered with %s", short_name(target.uuid), status.name)
        return bytearray(value)

    def _on_write(self, characteristic: Any, value: Any, **kwargs: Any) -> None:
        peripheral = self._peripheral
        target = self._lookup(characteristic)
        if peripheral is None or target is None:
            return
        peripheral.on_characteristic_write(
            AGGREGATE_PEER,
            next(self._request_ids),
            target,
            bytes(value),
            response_needed=bool(target.capabilities & Capability.WRITE),
        )

    # Helpers

    def _lookup(self, characteristic: Any) -> Characteristic | None:
        peripheral = self._peripheral
        if peripheral is None:
            return None
        # Alert Level lives in both Immediate Alert and Link Loss, so the owning service is part of the key.
        try:
            return peripheral.catalog.find(
                normalize_uuid(str(characteristic.service_uuid)),
                normalize_uuid(str(characteristic.uuid)),
            )
        except (AttributeError, CatalogLookupError, ValueError):
            LOGGER.warning("Request for unknown characteristic %s", characteristic.uuid)
            return None

    def _report(self, service_uuid: str, success: bool) -> None:
        if self._peripheral is not None:
            self._peripheral.on_registration_result(service_uuid, success)

    def _require_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            raise TransportConnectError("GATT server is not open")
        return self._loop

    def _call(self, coro: Coroutine[Any, Any, Any], error: type[Exception], action: str) -> Any:
        try:
            loop = self._require_loop()
        except TransportConnectError:
            coro.close()
            raise
        if threading.current_thread() is self._thread:
            coro.close()
            raise TransportSendError(f"Cannot {action} from the bless loop thread")
        future = asyncio.run_coroutine_threadsafe(coro, loop)
        try:
            return future.result(self.timeout_s)
        except concurrent.futures.TimeoutError as exc:
            future.cancel()
            raise TransportTimeoutError(f"Timed out trying to {action}") from exc
        except (TransportConnectError, TransportSendError, TransportTimeoutError):
            raise
        except Exception as exc:
            raise error(f"Failed to {action}: {exc}") from exc


def _update_value(handle: Any, characteristic: Characteristic, value: bytes | None = None) -> None:
    service = handle.get_service(characteristic.service_uuid)
    target = service.get_characteristic(characteristic.uuid) if service is not None else None
    if target is None:
        raise TransportSendError(f"Characteristic {short_name(characteristic.uuid)} not registered")
    target.value = bytearray(characteristic.value if value is None else value)
    handle.update_value(characteristic.service_uuid, characteristic.uuid)


def _update_logged(handle: Any, characteristic: Characteristic, value: bytes) -> None:
    try:
        _update_value(handle, characteristic, value)
    except Exception as exc:
        LOGGER.warning("Failed to update %s: %s", short_name(characteristic.uuid), exc)


def _bless_flags(capabilities: Capability) -> tuple[Any, Any]:
    from bless import GATTAttributePermissions, GATTCharacteristicProperties  # type: ignore

    properties = GATTCharacteristicProperties(0)
    permissions = GATTAttributePermissions(0)
    if capabilities & Capability.READ:
        properties |= GATTCharacteristicProperties.read
        permissions |= GATTAttributePermissions.readable
    if capabilities & Capability.WRITE:
        properties |= GATTCharacteristicProperties.write
        permissions |= GATTAttributePermissions.writeable
    if capabilities & Capability.WRITE_WITHOUT_RESPONSE:
        properties |= GATTCharacteristicProperties.write_without_response
        permissions |= GATTAttributePermissions.writeable
    if capabilities & Capability.NOTIFY:
        properties |= GATTCharacteristicProperties.notify
    if capabilities & Capability.INDICATE:
        properties |= GATTCharacteristicProperties.indicate
    if not permissions:
        permissions = GATTAttributePermissions.readable
    return properties, permissions
