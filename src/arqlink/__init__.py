"""arqlink: ARQ acknowledgment policies over a simulated lossy channel.

The package keeps the layers apart the way reliability-first systems do:
- integrity (CRC-8) and envelope framing are pure codecs
- the impairment channel is a seedable, event-driven simulation
- one retransmission state machine serves all three policies

Everything runs on a virtual-time event loop, so tests are deterministic.
"""

from .clock import EventLoop
from .errors import DecodeError, DeliveryFailed
from .layer import ReliabilityLayer, negative_only, positive_negative, positive_only
from .net import ChannelConfig, ImpairmentChannel
from .packet import Envelope, Signal

__all__ = [
    "ChannelConfig",
    "DecodeError",
    "DeliveryFailed",
    "Envelope",
    "EventLoop",
    "ImpairmentChannel",
    "ReliabilityLayer",
    "Signal",
    "negative_only",
    "positive_negative",
    "positive_only",
]
