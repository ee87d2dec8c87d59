from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Optional

from .clock import EventLoop
from .constants import DEFAULT_MAX_ATTEMPTS
from .errors import DeliveryFailed
from .layer import ReliabilityLayer
from .net import ChannelConfig, ImpairmentChannel
from .policy import POLICIES

DEFAULT_PAYLOAD = b"Hello, reliable world!"
_UNSET = object()


@dataclass(frozen=True, slots=True)
class BenchmarkResult:
    policy: str
    sends: int
    completed: int
    failed: int
    pending: int
    transmissions: int
    retransmits: int
    timeouts: int
    received: int
    corrupted_deliveries: int
    channel_sent: int
    channel_dropped: int
    channel_corrupted: int
    elapsed: float

    @property
    def attempts_per_send(self) -> float:
        if self.sends == 0:
            return 0.0
        return self.transmissions / self.sends


def run_benchmark(
    *,
    policy: str,
    count: int,
    config: ChannelConfig,
    timeout=_UNSET,
    max_attempts: Optional[int] = DEFAULT_MAX_ATTEMPTS,
    seed: Optional[int] = None,
    payload: bytes = DEFAULT_PAYLOAD,
) -> BenchmarkResult:
    """Issue ``count`` independent sends and run the loop until idle.

    Every sender/receiver pair shares one channel, as in the demo, but
    each send owns its own attempt state.
    """
    loop = EventLoop()
    channel = ImpairmentChannel(config, loop, random.Random(seed), name=policy)

    kw = {} if timeout is _UNSET else {"timeout": timeout}
    receiver = ReliabilityLayer(channel, POLICIES[policy])
    layer = ReliabilityLayer(
        channel,
        POLICIES[policy],
        peer=receiver,
        max_attempts=max_attempts,
        **kw,
    )

    futures = [layer.send(payload) for _ in range(count)]
    loop.run()

    completed = sum(1 for f in futures if f.done() and f.exception() is None)
    failed = sum(1 for f in futures if f.done() and isinstance(f.exception(), DeliveryFailed))
    m = layer.metrics
    return BenchmarkResult(
        policy=policy,
        sends=count,
        completed=completed,
        failed=failed,
        pending=count - completed - failed,
        transmissions=m.transmissions,
        retransmits=m.retransmits,
        timeouts=m.timeouts,
        received=receiver.receiver.delivered,
        corrupted_deliveries=receiver.receiver.faults + m.decode_errors,
        channel_sent=channel.stats.sent,
        channel_dropped=channel.stats.dropped,
        channel_corrupted=channel.stats.corrupted,
        elapsed=loop.now,
    )
