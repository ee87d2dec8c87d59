"""Acknowledgment policies.

A policy is only a set of tables; the retransmission algorithm itself lives
in :mod:`arqlink.sender` and is shared by all three variants.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from .constants import DEFAULT_TIMEOUT
from .packet import Signal


class Outcome(enum.Enum):
    COMPLETE = "complete"
    RETRANSMIT = "retransmit"
    IGNORE = "ignore"


@dataclass(frozen=True, slots=True)
class AcknowledgmentPolicy:
    name: str
    # receiver side
    on_good: Signal
    on_fault: Signal
    # sender side
    responses: Mapping[Signal, Outcome] = field(hash=False)
    on_timeout: Outcome
    default_timeout: float | None

    def react(self, signal: Signal) -> Outcome:
        return self.responses.get(signal, Outcome.IGNORE)

    def signal_for(self, intact: bool) -> Signal:
        return self.on_good if intact else self.on_fault


def _table(**entries: Outcome) -> Mapping[Signal, Outcome]:
    return MappingProxyType({Signal[k]: v for k, v in entries.items()})


POSITIVE_NEGATIVE = AcknowledgmentPolicy(
    name="ack-nak",
    on_good=Signal.ACK,
    on_fault=Signal.NAK,
    responses=_table(ACK=Outcome.COMPLETE, NAK=Outcome.RETRANSMIT, NONE=Outcome.IGNORE),
    on_timeout=Outcome.RETRANSMIT,
    default_timeout=DEFAULT_TIMEOUT,
)

POSITIVE_ONLY = AcknowledgmentPolicy(
    name="ack",
    on_good=Signal.ACK,
    on_fault=Signal.NONE,
    responses=_table(ACK=Outcome.COMPLETE, NAK=Outcome.IGNORE, NONE=Outcome.IGNORE),
    on_timeout=Outcome.RETRANSMIT,
    default_timeout=DEFAULT_TIMEOUT,
)

# Silence means success: a NONE response or a quiet period with no NAK
# both complete the send.
NEGATIVE_ONLY = AcknowledgmentPolicy(
    name="nak",
    on_good=Signal.NONE,
    on_fault=Signal.NAK,
    responses=_table(ACK=Outcome.COMPLETE, NAK=Outcome.RETRANSMIT, NONE=Outcome.COMPLETE),
    on_timeout=Outcome.COMPLETE,
    default_timeout=DEFAULT_TIMEOUT,
)

POLICIES = {p.name: p for p in (POSITIVE_NEGATIVE, POSITIVE_ONLY, NEGATIVE_ONLY)}
