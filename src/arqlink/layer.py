from __future__ import annotations

from concurrent.futures import Future
from typing import Any, Callable, Optional

from .constants import DEFAULT_MAX_ATTEMPTS
from .net import ImpairmentChannel
from .packet import Signal
from .policy import NEGATIVE_ONLY, POSITIVE_NEGATIVE, POSITIVE_ONLY, AcknowledgmentPolicy
from .receiver import Receiver
from .sender import Metrics, ReliableSender

_POLICY_DEFAULT: Any = object()


class ReliabilityLayer:
    """Send/receive endpoint of one acknowledgment policy over a channel.

    ``send`` delivers to ``peer.receive`` through the channel, or to this
    layer's own ``receive`` when no peer is given. The peer's signal comes
    back through the same channel.
    """

    def __init__(
        self,
        channel: ImpairmentChannel,
        policy: AcknowledgmentPolicy,
        *,
        peer: Optional["ReliabilityLayer"] = None,
        timeout: Optional[float] = _POLICY_DEFAULT,
        max_attempts: Optional[int] = DEFAULT_MAX_ATTEMPTS,
        on_payload: Optional[Callable[[bytes], None]] = None,
    ):
        if timeout is _POLICY_DEFAULT:
            timeout = policy.default_timeout
        if timeout is not None and not timeout > 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        if max_attempts is not None and max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

        self.channel = channel
        self.policy = policy
        self.peer = peer
        self.receiver = Receiver(policy, on_payload)
        self.sender = ReliableSender(
            channel,
            policy,
            self._deliver,
            timeout=timeout,
            max_attempts=max_attempts,
        )

    @property
    def metrics(self) -> Metrics:
        return self.sender.metrics

    @property
    def timeout(self) -> Optional[float]:
        return self.sender.timeout

    def send(self, payload: bytes, on_complete: Optional[Callable[[], None]] = None) -> Future:
        return self.sender.send(payload, on_complete)

    def receive(self, raw: bytes) -> Signal:
        return self.receiver.receive(raw)

    def _deliver(self, raw: bytes) -> Signal:
        target = self.peer if self.peer is not None else self
        return target.receive(raw)


def positive_negative(channel: ImpairmentChannel, **kw: Any) -> ReliabilityLayer:
    return ReliabilityLayer(channel, POSITIVE_NEGATIVE, **kw)


def positive_only(channel: ImpairmentChannel, **kw: Any) -> ReliabilityLayer:
    return ReliabilityLayer(channel, POSITIVE_ONLY, **kw)


def negative_only(channel: ImpairmentChannel, **kw: Any) -> ReliabilityLayer:
    return ReliabilityLayer(channel, NEGATIVE_ONLY, **kw)
