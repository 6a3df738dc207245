"""Inbound read/write handling: control points, CCCD writes and the scale protocol."""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from gattsim.core import codec, scale_frames
from gattsim.core import uuids as u
from gattsim.core.catalog import MEASUREMENT_INTERVAL_RANGE, GattCatalog
from gattsim.core.model import AttStatus, Characteristic, Descriptor, SubscriptionMode
from gattsim.core.simulation import DeferredCalls, SimulationState
from gattsim.core.subscriptions import Notifier, SubscriptionRegistry

LOGGER = logging.getLogger(__name__)

SIMULATED_SCALE_MAC = "A4:C1:38:00:00:01"

FTMS_REQUEST_CONTROL = 0x00
FTMS_RESET = 0x01
FTMS_SET_TARGET_RESISTANCE = 0x04
FTMS_START_OR_RESUME = 0x07
FTMS_STOP_OR_PAUSE = 0x08

HR_RESET_ENERGY_EXPENDED = 0x01

RACP_REPORT_STORED_RECORDS = 0x01
RACP_DELETE_STORED_RECORDS = 0x02
RACP_ABORT_OPERATION = 0x03
RACP_REPORT_NUMBER_OF_RECORDS = 0x04


@dataclass(frozen=True)
class Reply:
    characteristic: Characteristic
    value: bytes
    as_indication: bool


@dataclass(frozen=True)
class WriteResult:
    """Status for the write acknowledgement plus replies to push once it is sent."""

    status: AttStatus
    replies: tuple[Reply, ...] = ()


def _firmware_version(firmware: str) -> tuple[int, int]:
    parts = firmware.split(".")
    try:
        major = int(parts[0])
        minor = int(parts[1]) if len(parts) > 1 else 0
    except ValueError:
        return (0, 0)
    return (major & 0xFF, minor & 0xFF)


class CommandDispatcher:
    def __init__(
        self,
        catalog: GattCatalog,
        registry: SubscriptionRegistry,
        notifier: Notifier,
        state: SimulationState,
        deferred: DeferredCalls,
        history_reply_delay_s: float = 0.5,
        firmware: str = "1.0.0",
        scale_mac: str = SIMULATED_SCALE_MAC,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._catalog = catalog
        self._registry = registry
        self._notifier = notifier
        self._state = state
        self._deferred = deferred
        self._history_reply_delay_s = history_reply_delay_s
        self._firmware = _firmware_version(firmware)
        self._scale_mac = scale_mac
        self._rng = rng or random.Random()
        self._clock = clock
        self._write_handlers: dict[str, Callable[[Characteristic, bytes], WriteResult]] = {
            u.FITNESS_MACHINE_CONTROL_POINT: self._fitness_machine_control_point,
            u.HEART_RATE_CONTROL_POINT: self._heart_rate_control_point,
            u.MEASUREMENT_INTERVAL: self._measurement_interval,
            u.RECORD_ACCESS_CONTROL_POINT: self._record_access_control_point,
            u.SCALE_WRITE: self._scale_command,
        }

    # Reads

    def handle_read(self, device: str, characteristic: Characteristic, offset: int) -> tuple[AttStatus, bytes]:
        if not characteristic.readable:
            return AttStatus.READ_NOT_PERMITTED, b""
        if offset != 0:
            LOGGER.debug("%s read %s at offset %d rejected", device, u.short_name(characteristic.uuid), offset)
            return AttStatus.INVALID_OFFSET, b""
        return AttStatus.SUCCESS, characteristic.value

    def handle_descriptor_read(
        self,
        device: str,
        characteristic: Characteristic,
        descriptor: Descriptor,
        offset: int,
    ) -> tuple[AttStatus, bytes]:
        if offset != 0:
            return AttStatus.INVALID_OFFSET, b""
        if descriptor.is_cccd:
            return AttStatus.SUCCESS, self._registry.subscription(device, characteristic).to_cccd()
        return AttStatus.SUCCESS, descriptor.value

    # Writes

    def handle_descriptor_write(
        self,
        device: str,
        characteristic: Characteristic,
        descriptor: Descriptor,
        value: bytes,
    ) -> AttStatus:
        if not descriptor.is_cccd:
            LOGGER.warning("Write to unsupported descriptor %s rejected", u.short_name(descriptor.uuid))
            return AttStatus.REQUEST_NOT_SUPPORTED
        if len(value) != 2:
            return AttStatus.INVALID_ATTRIBUTE_VALUE_LENGTH
        mode = SubscriptionMode.from_cccd(value)
        if mode is None:
            LOGGER.warning("Unrecognized CCCD value %s from %s", bytes(value).hex(), device)
            return AttStatus.REQUEST_NOT_SUPPORTED
        self._registry.record_subscription(device, characteristic, mode)
        LOGGER.info("%s %s %s", device, _subscription_verb(mode), u.short_name(characteristic.uuid))
        return AttStatus.SUCCESS

    def handle_write(self, device: str, characteristic: Characteristic, value: bytes, offset: int = 0) -> WriteResult:
        if not characteristic.writable:
            return WriteResult(AttStatus.WRITE_NOT_PERMITTED)
        if offset != 0:
            return WriteResult(AttStatus.INVALID_OFFSET)
        LOGGER.debug("%s wrote %s to %s", device, bytes(value).hex(), u.short_name(characteristic.uuid))

        handler = self._write_handlers.get(characteristic.uuid)
        if handler is None:
            characteristic.set_value(value)
            return WriteResult(AttStatus.SUCCESS)
        return handler(characteristic, bytes(value))

    def deliver(self, result: WriteResult) -> None:
        for reply in result.replies:
            reply.characteristic.set_value(reply.value)
            self._notifier.dispatch(reply.characteristic, reply.as_indication)

    # Standard control points

    def _fitness_machine_control_point(self, characteristic: Characteristic, value: bytes) -> WriteResult:
        if not value:
            return WriteResult(AttStatus.INVALID_ATTRIBUTE_VALUE_LENGTH)

        opcode = value[0]
        result = codec.CP_RESULT_SUCCESS
        if opcode == FTMS_SET_TARGET_RESISTANCE:
            if len(value) < 2:
                result = codec.CP_RESULT_INVALID_PARAMETER
            else:
                self._state.set_target_resistance(value[1])
                LOGGER.info("Target resistance set to %d", value[1])
        elif opcode == FTMS_REQUEST_CONTROL:
            LOGGER.info("Fitness machine control granted")
        elif opcode == FTMS_RESET:
            self._state.reset()
            LOGGER.info("Fitness machine reset")
        elif opcode == FTMS_START_OR_RESUME:
            self._state.set_machine_running(True)
        elif opcode == FTMS_STOP_OR_PAUSE:
            self._state.set_machine_running(False)
        else:
            LOGGER.warning("Unsupported fitness machine control point op code 0x%02X", opcode)
            result = codec.CP_RESULT_OP_CODE_NOT_SUPPORTED

        reply = Reply(characteristic, codec.control_point_response(opcode, result), as_indication=True)
        return WriteResult(AttStatus.SUCCESS, (reply,))

    def _heart_rate_control_point(self, characteristic: Characteristic, value: bytes) -> WriteResult:
        if value != bytes([HR_RESET_ENERGY_EXPENDED]):
            return WriteResult(AttStatus.CONTROL_POINT_NOT_SUPPORTED)
        self._state.reset_energy()
        LOGGER.info("Energy expended reset")
        return WriteResult(AttStatus.SUCCESS)

    def _measurement_interval(self, characteristic: Characteristic, value: bytes) -> WriteResult:
        if len(value) != 2:
            return WriteResult(AttStatus.INVALID_ATTRIBUTE_VALUE_LENGTH)
        seconds = int.from_bytes(value, "little")
        low, high = MEASUREMENT_INTERVAL_RANGE
        if not low <= seconds <= high:
            return WriteResult(AttStatus.OUT_OF_RANGE)
        characteristic.set_value(value)
        return WriteResult(AttStatus.SUCCESS)

    def _record_access_control_point(self, characteristic: Characteristic, value: bytes) -> WriteResult:
        if not value:
            return WriteResult(AttStatus.INVALID_ATTRIBUTE_VALUE_LENGTH)

        opcode = value[0]
        if opcode == RACP_REPORT_NUMBER_OF_RECORDS:
            response = codec.racp_number_of_records(0)
        elif opcode in (RACP_REPORT_STORED_RECORDS, RACP_DELETE_STORED_RECORDS):
            response = codec.racp_response(opcode, codec.RACP_NO_RECORDS_FOUND)
        elif opcode == RACP_ABORT_OPERATION:
            response = codec.racp_response(opcode, codec.RACP_SUCCESS)
        else:
            response = codec.racp_response(opcode, codec.RACP_OP_CODE_NOT_SUPPORTED)
        return WriteResult(AttStatus.SUCCESS, (Reply(characteristic, response, as_indication=True),))

    # Proprietary scale

    def _scale_command(self, characteristic: Characteristic, value: bytes) -> WriteResult:
        if not value:
            return WriteResult(AttStatus.INVALID_ATTRIBUTE_VALUE_LENGTH)

        notify_char = self._catalog.find(u.SCALE_SERVICE, u.SCALE_NOTIFY)
        opcode = value[0]
        if opcode == scale_frames.OP_HISTORY_REQUEST:
            LOGGER.info("History request received; replying in %.1fs", self._history_reply_delay_s)
            self._deferred.call_later(self._history_reply_delay_s, lambda: self._send_history(notify_char))
            return WriteResult(AttStatus.SUCCESS)

        if opcode == scale_frames.OP_DEVICE_INFO:
            frame = scale_frames.device_info_frame(
                self._scale_mac,
                self._battery_level(),
                self._state.unit(),
                *self._firmware,
            )
        elif opcode == scale_frames.OP_SET_UNIT:
            if len(value) >= 2 and value[1] in (scale_frames.UNIT_KG, scale_frames.UNIT_LB, scale_frames.UNIT_ST):
                self._state.set_scale_unit(value[1])
                frame = scale_frames.ack_frame(opcode, scale_frames.ACK_OK)
            else:
                frame = scale_frames.ack_frame(opcode, scale_frames.ACK_INVALID)
        elif opcode == scale_frames.OP_MCU_COMMAND:
            if len(value) >= 2:
                frame = scale_frames.mcu_response_frame(value[1], [scale_frames.ACK_OK])
            else:
                frame = scale_frames.ack_frame(opcode, scale_frames.ACK_INVALID)
        else:
            LOGGER.warning("Unsupported scale op code 0x%02X", opcode)
            frame = scale_frames.ack_frame(opcode, scale_frames.ACK_UNSUPPORTED)
        return WriteResult(AttStatus.SUCCESS, (Reply(notify_char, frame, as_indication=False),))

    def _send_history(self, notify_char: Characteristic) -> None:
        frame = scale_frames.synthetic_history_frame(
            timestamp=int(self._clock().timestamp()),
            weight_kg=round(self._rng.uniform(60.0, 80.0), 2),
            impedance=self._rng.randint(400, 600),
        )
        LOGGER.debug("Sending history frame %s", frame.hex())
        notify_char.set_value(frame)
        self._notifier.dispatch(notify_char, as_indication=False)

    def _battery_level(self) -> int:
        value = self._catalog.get_value(u.BATTERY_SERVICE, u.BATTERY_LEVEL)
        return value[0] if value else 0


def _subscription_verb(mode: SubscriptionMode) -> str:
    if mode is SubscriptionMode.NOTIFY:
        return "enabled notifications on"
    if mode is SubscriptionMode.INDICATE:
        return "enabled indications on"
    return "disabled updates on"
