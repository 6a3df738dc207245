"""Host BLE stack interface consumed by the peripheral."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from gattsim.core.model import AttStatus, Characteristic, Service


class HostStack(Protocol):
    """Operations the simulator needs from the platform's GATT server.

    Registration results and inbound requests come back through the
    ``Peripheral.on_*`` callbacks. Failures are reported by raising
    ``TransportError`` subclasses (``TransportPermissionError`` when the
    platform refuses for lack of permission).
    """

    def open_server(self) -> Any:
        """Open the GATT server and return an opaque handle."""

    def close_server(self, handle: Any) -> None:
        """Release the server handle."""

    def submit_service(self, handle: Any, service: Service) -> None:
        """Start adding one service; completion is reported asynchronously."""

    def notify(self, handle: Any, device: str, characteristic: Characteristic, as_indication: bool) -> None:
        """Push the characteristic's current value to one peer.

        Called with the subscription lock held, so it must not wait on a thread
        that may call back into the peripheral.
        """

    def send_read_response(
        self,
        handle: Any,
        device: str,
        request_id: int,
        status: AttStatus,
        offset: int,
        value: bytes,
    ) -> None:
        """Answer a read request."""

    def send_write_ack(self, handle: Any, device: str, request_id: int, status: AttStatus) -> None:
        """Answer a write request that asked for a response."""
