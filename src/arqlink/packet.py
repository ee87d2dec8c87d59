from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass

from .constants import FIELD_CRC, FIELD_DATA
from .crc import crc8
from .errors import DecodeError

log = logging.getLogger(__name__)


class Signal(enum.Enum):
    ACK = "ACK"
    NAK = "NAK"
    NONE = "NONE"


@dataclass(frozen=True, slots=True)
class Envelope:
    data: bytes
    crc: int

    @staticmethod
    def seal(payload: bytes) -> "Envelope":
        return Envelope(data=bytes(payload), crc=crc8(payload))

    def to_bytes(self) -> bytes:
        # surrogateescape keeps non-UTF-8 payloads intact; json escapes the
        # lone surrogates so the wire form stays ASCII.
        text = self.data.decode("utf-8", "surrogateescape")
        record = {FIELD_DATA: text, FIELD_CRC: self.crc}
        return json.dumps(record, separators=(",", ":")).encode("ascii")

    @staticmethod
    def from_bytes(raw: bytes) -> "Envelope":
        try:
            record = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError, RecursionError) as exc:
            raise DecodeError(f"not a JSON envelope: {exc}") from exc

        if not isinstance(record, dict):
            raise DecodeError("envelope must be a JSON object")
        if FIELD_DATA not in record or FIELD_CRC not in record:
            raise DecodeError("envelope is missing a field")

        text = record[FIELD_DATA]
        checksum = record[FIELD_CRC]
        if not isinstance(text, str):
            raise DecodeError(f"{FIELD_DATA!r} must be a string")
        if isinstance(checksum, bool) or not isinstance(checksum, int):
            raise DecodeError(f"{FIELD_CRC!r} must be an integer")

        try:
            data = text.encode("utf-8", "surrogateescape")
        except UnicodeEncodeError as exc:
            raise DecodeError(f"payload text is not encodable: {exc}") from exc
        return Envelope(data=data, crc=checksum)


def encode_signal(signal: Signal) -> bytes:
    return signal.value.encode("ascii")


def decode_signal(raw: bytes) -> Signal:
    try:
        return Signal(raw.decode("ascii"))
    except (UnicodeDecodeError, ValueError):
        log.debug("unrecognised response %r; treating as NONE", raw)
        return Signal.NONE
