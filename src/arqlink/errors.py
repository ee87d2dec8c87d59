from __future__ import annotations


class DecodeError(ValueError):
    """Raised when bytes do not parse into a ``{data, crc}`` envelope."""


class DeliveryFailed(Exception):
    """Terminal failure of one logical send after too many attempts."""

    def __init__(self, attempts: int):
        super().__init__(f"delivery failed after {attempts} attempts")
        self.attempts = attempts
