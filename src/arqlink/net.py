from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Callable

from .clock import EventLoop
from .constants import DEFAULT_MAX_DELAY

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ChannelConfig:
    drop_probability: float = 0.0
    delay_probability: float = 0.0
    corruption_probability: float = 0.0
    max_delay: float = DEFAULT_MAX_DELAY

    def __post_init__(self) -> None:
        for name in ("drop_probability", "delay_probability", "corruption_probability"):
            p = getattr(self, name)
            if not 0.0 <= p <= 1.0:
                raise ValueError(f"{name} must be in [0, 1], got {p}")
        if not self.max_delay >= 0:
            raise ValueError(f"max_delay must be >= 0, got {self.max_delay}")

    @classmethod
    def lossless(cls) -> "ChannelConfig":
        return cls()

    @classmethod
    def lossy(cls) -> "ChannelConfig":
        """Drop 20%, delay 30% (up to 2000), corrupt 10%."""
        return cls(
            drop_probability=0.2,
            delay_probability=0.3,
            corruption_probability=0.1,
            max_delay=2000,
        )

    @classmethod
    def hostile(cls) -> "ChannelConfig":
        return cls(
            drop_probability=0.4,
            delay_probability=0.5,
            corruption_probability=0.3,
            max_delay=3000,
        )


@dataclass(slots=True)
class ChannelStats:
    sent: int = 0
    dropped: int = 0
    corrupted: int = 0
    delayed: int = 0


class ImpairmentChannel:
    """Simulated transport that drops, corrupts and delays frames.

    The three trials are independent and run in a fixed order: drop, then
    corruption of the serialized bytes, then delay. A dropped frame never
    reaches ``on_delivered``; every other frame reaches it exactly once,
    through the event loop and never re-entrantly.
    """

    def __init__(
        self,
        config: ChannelConfig,
        loop: EventLoop,
        rng: random.Random | None = None,
        name: str = "",
    ):
        self.config = config
        self.loop = loop
        self.rng = rng or random.Random()
        self.name = name
        self.stats = ChannelStats()

    def should_drop(self) -> bool:
        return self.rng.random() < self.config.drop_probability

    def should_corrupt(self) -> bool:
        return self.rng.random() < self.config.corruption_probability

    def corrupt(self, raw: bytes) -> bytes:
        if not raw:
            return raw
        buf = bytearray(raw)
        byte_index = self.rng.randrange(len(buf))
        bit_index = self.rng.randrange(8)
        buf[byte_index] ^= 1 << bit_index
        return bytes(buf)

    def sample_delay(self) -> float:
        if self.rng.random() < self.config.delay_probability:
            return self.rng.uniform(0.0, self.config.max_delay)
        return 0.0

    def send(self, raw: bytes, on_delivered: Callable[[bytes], None]) -> None:
        self.stats.sent += 1
        if self.should_drop():
            self.stats.dropped += 1
            log.debug("[%s] DROPPED %d bytes", self.name, len(raw))
            return

        if self.should_corrupt():
            corrupted = self.corrupt(raw)
            if corrupted != raw:
                self.stats.corrupted += 1
                log.debug("[%s] bit error: %r -> %r", self.name, raw, corrupted)
            raw = corrupted

        delay = self.sample_delay()
        if delay > 0:
            self.stats.delayed += 1
            log.debug("[%s] delayed by %.1f", self.name, delay)
        self.loop.call_later(delay, on_delivered, raw)
