"""Per-peer subscription tracking and notify/indicate dispatch."""

from __future__ import annotations

import logging
import threading
from typing import Any

from gattsim.core.errors import TransportError
from gattsim.core.model import Characteristic, SubscriptionMode
from gattsim.core.uuids import short_name
from gattsim.transports.base import HostStack

LOGGER = logging.getLogger(__name__)


class SubscriptionRegistry:
    """Connected peers and their CCCD state, keyed by (device, characteristic).

    Both structures sit behind one re-entrant lock. ``Notifier.dispatch`` holds it
    for the whole send loop, so a disconnect from another thread waits for the
    dispatch to finish and is never followed by a send to that device.
    """

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self._devices: set[str] = set()
        self._modes: dict[tuple[str, tuple[str, str]], SubscriptionMode] = {}

    def add_device(self, device: str) -> bool:
        """Returns True if this was the first connected device."""
        with self.lock:
            was_empty = not self._devices
            self._devices.add(device)
            return was_empty

    def remove_device(self, device: str) -> bool:
        """Forget a device and its subscriptions. Returns True if none remain connected."""
        with self.lock:
            self._devices.discard(device)
            for key in [k for k in self._modes if k[0] == device]:
                del self._modes[key]
            return not self._devices

    def connected_devices(self) -> frozenset[str]:
        with self.lock:
            return frozenset(self._devices)

    def record_subscription(self, device: str, characteristic: Characteristic, mode: SubscriptionMode) -> None:
        with self.lock:
            self._modes[(device, characteristic.key)] = mode
        LOGGER.debug("%s set %s on %s", device, mode.value, short_name(characteristic.uuid))

    def subscription(self, device: str, characteristic: Characteristic) -> SubscriptionMode:
        with self.lock:
            return self._modes.get((device, characteristic.key), SubscriptionMode.NONE)

    def is_subscribed(self, device: str, characteristic: Characteristic, mode: SubscriptionMode) -> bool:
        with self.lock:
            return device in self._devices and self._modes.get((device, characteristic.key)) is mode

    def subscribers(self, characteristic: Characteristic, mode: SubscriptionMode) -> list[str]:
        with self.lock:
            return sorted(
                device
                for device in self._devices
                if self._modes.get((device, characteristic.key)) is mode
            )


class Notifier:
    """The only place outbound notifications and indications originate.

    Sends are best effort: a failure for one peer is logged and the remaining
    peers are still served. Nothing is queued or retried.
    """

    def __init__(self, registry: SubscriptionRegistry, host: HostStack) -> None:
        self._registry = registry
        self._host = host
        self.handle: Any = None

    def dispatch(self, characteristic: Characteristic, as_indication: bool) -> int:
        """Send to every connected peer subscribed with the matching mode; returns the count sent."""
        handle = self.handle
        if handle is None:
            LOGGER.debug("No open server; skipping dispatch of %s", short_name(characteristic.uuid))
            return 0

        wanted = SubscriptionMode.INDICATE if as_indication else SubscriptionMode.NOTIFY
        sent = 0
        with self._registry.lock:
            for device in self._registry.subscribers(characteristic, wanted):
                # A send to an earlier peer may have disconnected this one on the same thread.
                if not self._registry.is_subscribed(device, characteristic, wanted):
                    continue
                try:
                    self._host.notify(handle, device, characteristic, as_indication)
                except TransportError as exc:
                    LOGGER.warning(
                        "Failed to %s %s to %s: %s",
                        "indicate" if as_indication else "notify",
                        short_name(characteristic.uuid),
                        device,
                        exc,
                    )
                    continue
                sent += 1
        return sent
