"""Frames of the proprietary body-composition scale protocol (service 0xFFF0).

Every frame carries a one-byte additive checksum: the sum of all bytes from
offset 1 up to the byte just before the checksum, truncated to 8 bits. The
header byte at offset 0 is never part of the sum. For frames that end with the
checksum, the window is offsets 1..len-2; the MCU response frame carries a
trailing 0xAA after its checksum.
"""

from __future__ import annotations

import struct
from collections.abc import Iterable, Sequence

from gattsim.core.errors import EncodingError

DEVICE_INFO_HEADER = b"\xfe\x36"
REALTIME_HEADER = 0xDF
HISTORY_HEADER = 0xF2
ACK_HEADER = 0xFD
MCU_RESPONSE_HEADER = b"\x55\xfd"
MCU_RESPONSE_TRAILER = 0xAA

OP_SET_UNIT = 0xF1
OP_HISTORY_REQUEST = 0xF2
OP_DEVICE_INFO = 0xFE
OP_MCU_COMMAND = 0x55

ACK_OK = 0x00
ACK_UNSUPPORTED = 0x01
ACK_INVALID = 0x02

UNIT_KG = 0x00
UNIT_LB = 0x01
UNIT_ST = 0x02

TLV_TIMESTAMP = 0x01
TLV_WEIGHT = 0x02
TLV_IMPEDANCE = 0x03
TLV_USER = 0x04

PROTOCOL_VERSION = 0x01
REALTIME_FRAME_LENGTH = 22
_MAX_TLV_PAYLOAD = 0xFF


def checksum(body: bytes) -> int:
    """8-bit additive checksum of ``body[1:]``; ``body`` excludes the checksum byte."""
    return sum(body[1:]) & 0xFF


def _seal(body: bytes) -> bytes:
    return bytes(body) + bytes([checksum(body)])


def verify_checksum(frame: bytes) -> bool:
    if len(frame) < 2:
        return False
    if frame[:2] == MCU_RESPONSE_HEADER:
        if len(frame) < 4 or frame[-1] != MCU_RESPONSE_TRAILER:
            return False
        return frame[-2] == checksum(frame[:-2])
    return frame[-1] == checksum(frame[:-1])


def _mac_bytes(mac: str) -> bytes:
    try:
        raw = bytes.fromhex(mac.replace(":", "").replace("-", ""))
    except ValueError as exc:
        raise EncodingError(f"Invalid MAC address '{mac}'") from exc
    if len(raw) != 6:
        raise EncodingError(f"Invalid MAC address '{mac}'")
    return raw


def device_info_frame(mac: str, battery: int, unit: int, firmware_major: int, firmware_minor: int) -> bytes:
    """``FE 36 ver mac[6] battery unit fw_major fw_minor cks`` (14 bytes)."""
    if not 0 <= battery <= 100:
        raise EncodingError(f"battery {battery} outside 0..100")
    body = (
        DEVICE_INFO_HEADER
        + bytes([PROTOCOL_VERSION])
        + _mac_bytes(mac)
        + bytes([battery, unit & 0xFF, firmware_major & 0xFF, firmware_minor & 0xFF])
    )
    return _seal(body)


def realtime_impedance_frame(
    weight_kg: float,
    impedance_20k: int,
    impedance_100k: int,
    heart_rate: int,
    unit: int = UNIT_KG,
    user_id: int = 0,
    timestamp: int = 0,
    stable: bool = True,
) -> bytes:
    """Realtime measurement frame, 22 bytes.

    ``DF state weight(u16, 0.01 kg) imp20k(u16) imp100k(u16) hr unit user ts(u32) reserved[6] cks``
    """
    weight = round(weight_kg * 100)
    if not 0 <= weight <= 0xFFFF:
        raise EncodingError(f"weight {weight_kg} kg outside encodable range")
    for name, value in (("impedance_20k", impedance_20k), ("impedance_100k", impedance_100k)):
        if not 0 <= value <= 0xFFFF:
            raise EncodingError(f"{name} {value} outside 0..65535")
    if not 0 <= heart_rate <= 0xFF:
        raise EncodingError(f"heart rate {heart_rate} outside 0..255")

    body = struct.pack(
        "<BBHHHBBBI6x",
        REALTIME_HEADER,
        0x01 if stable else 0x00,
        weight,
        impedance_20k,
        impedance_100k,
        heart_rate,
        unit & 0xFF,
        user_id & 0xFF,
        timestamp & 0xFFFFFFFF,
    )
    return _seal(body)


def history_tlv_frame(records: Iterable[tuple[int, bytes]]) -> bytes:
    """``F2 len (type len value)* cks`` where ``len`` counts the TLV bytes."""
    payload = bytearray()
    for record_type, value in records:
        if len(value) > 0xFF:
            raise EncodingError(f"TLV record 0x{record_type:02X} longer than 255 bytes")
        payload += bytes([record_type & 0xFF, len(value)]) + bytes(value)
    if len(payload) > _MAX_TLV_PAYLOAD:
        raise EncodingError("history TLV payload exceeds 255 bytes")
    return _seal(bytes([HISTORY_HEADER, len(payload)]) + payload)


def synthetic_history_frame(timestamp: int, weight_kg: float, impedance: int, user_id: int = 1) -> bytes:
    return history_tlv_frame(
        [
            (TLV_TIMESTAMP, struct.pack("<I", timestamp & 0xFFFFFFFF)),
            (TLV_WEIGHT, struct.pack("<H", round(weight_kg * 100) & 0xFFFF)),
            (TLV_IMPEDANCE, struct.pack("<H", impedance & 0xFFFF)),
            (TLV_USER, bytes([user_id & 0xFF])),
        ]
    )


def parse_tlv_records(frame: bytes) -> list[tuple[int, bytes]]:
    """Split a history frame back into its records; used by the BLE central and tests."""
    if not frame or frame[0] != HISTORY_HEADER or not verify_checksum(frame):
        raise EncodingError("not a valid history frame")
    payload = frame[2 : 2 + frame[1]]
    records: list[tuple[int, bytes]] = []
    index = 0
    while index < len(payload):
        if index + 2 > len(payload):
            raise EncodingError("truncated TLV header")
        record_type, length = payload[index], payload[index + 1]
        value = payload[index + 2 : index + 2 + length]
        if len(value) != length:
            raise EncodingError("truncated TLV value")
        records.append((record_type, bytes(value)))
        index += 2 + length
    return records


def ack_frame(opcode: int, status: int = ACK_OK) -> bytes:
    """Generic acknowledgement: ``FD opcode status cks``."""
    return _seal(bytes([ACK_HEADER, opcode & 0xFF, status & 0xFF]))


def mcu_response_frame(command: int, payload: Sequence[int] | bytes = b"") -> bytes:
    """``55 FD cmd len payload cks AA``; the checksum skips the 0x55 lead byte."""
    data = bytes(payload)
    if len(data) > 0xFF:
        raise EncodingError("MCU response payload exceeds 255 bytes")
    body = MCU_RESPONSE_HEADER + bytes([command & 0xFF, len(data)]) + data
    return _seal(body) + bytes([MCU_RESPONSE_TRAILER])
