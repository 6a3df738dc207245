"""Central-side client that exchanges payloads with a running simulator over BLE."""

from __future__ import annotations

import asyncio
import logging

from gattsim.core.errors import (
    TransportConnectError,
    TransportSendError,
    TransportTimeoutError,
)
from gattsim.core.uuids import short_name

LOGGER = logging.getLogger(__name__)


class BLEGATTCentral:
    """Connects with bleak, writes one payload and returns the first reply.

    With ``notify_char_uuid`` the reply is the first notification or indication
    on that characteristic; without it the written characteristic is read back.
    """

    def exchange(
        self,
        address: str,
        payload: bytes,
        *,
        write_char_uuid: str,
        notify_char_uuid: str | None = None,
        write_with_response: bool = True,
        timeout_s: float = 5.0,
    ) -> bytes | None:
        try:
            from bleak import BleakClient  # type: ignore
        except Exception as exc:  # pragma: no cover - import failure path
            raise TransportConnectError(
                "The BLE central requires 'bleak'. Install dependency and retry."
            ) from exc

        async def _run() -> bytes | None:
            reply: asyncio.Future[bytes] = asyncio.get_running_loop().create_future()

            def _on_notification(_: object, data: bytearray) -> None:
                if not reply.done():
                    reply.set_result(bytes(data))

            async with BleakClient(address, timeout=timeout_s) as client:
                if not client.is_connected:
                    raise TransportConnectError(f"BLE connect failed for {address}")

                if notify_char_uuid:
                    await client.start_notify(notify_char_uuid, _on_notification)
                try:
                    LOGGER.debug("Writing %s to %s", payload.hex(), short_name(write_char_uuid))
                    await client.write_gatt_char(write_char_uuid, payload, response=write_with_response)

                    if notify_char_uuid:
                        try:
                            return await asyncio.wait_for(reply, timeout_s)
                        except asyncio.TimeoutError as exc:
                            raise TransportTimeoutError(
                                f"Timed out waiting for a notification on {short_name(notify_char_uuid)}"
                            ) from exc

                    data = await client.read_gatt_char(write_char_uuid)
                    return bytes(data) if data else None
                finally:
                    if notify_char_uuid and client.is_connected:
                        await client.stop_notify(notify_char_uuid)

        try:
            return asyncio.run(_run())
        except (TransportTimeoutError, TransportConnectError):
            raise
        except Exception as exc:
            raise TransportSendError(f"BLE exchange failed: {exc}") from exc
