"""CRC-8 (poly 0x07, init 0, no reflection, no final xor)."""
from __future__ import annotations

from .constants import CRC8_INIT, CRC8_POLY


def crc8_bitwise(payload: bytes) -> int:
    crc = CRC8_INIT
    for byte in payload:
        crc ^= byte
        for _ in range(8):
            if crc & 0x80:
                crc = ((crc << 1) ^ CRC8_POLY) & 0xFF
            else:
                crc = (crc << 1) & 0xFF
    return crc


_TABLE = tuple(crc8_bitwise(bytes([i])) for i in range(256))


def crc8(payload: bytes) -> int:
    crc = CRC8_INIT
    for byte in payload:
        crc = _TABLE[crc ^ byte]
    return crc


def verify(payload: bytes, checksum: int) -> bool:
    return crc8(payload) == checksum
