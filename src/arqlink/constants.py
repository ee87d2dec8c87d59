from __future__ import annotations

CRC8_POLY = 0x07  # x^8 + x^2 + x + 1
CRC8_INIT = 0x00

FIELD_DATA = "data"
FIELD_CRC = "crc"

DEFAULT_TIMEOUT = 1000
DEFAULT_MAX_ATTEMPTS = 32
DEFAULT_MAX_DELAY = 1000
