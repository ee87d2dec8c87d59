from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .crc import verify
from .packet import Envelope, Signal
from .policy import AcknowledgmentPolicy

log = logging.getLogger(__name__)


@dataclass(slots=True)
class Receiver:
    policy: AcknowledgmentPolicy
    on_payload: Optional[Callable[[bytes], None]] = None
    delivered: int = 0
    faults: int = 0

    def receive(self, raw: bytes) -> Signal:
        # DecodeError propagates to the caller; no signal is produced.
        envelope = Envelope.from_bytes(raw)

        if verify(envelope.data, envelope.crc):
            self.delivered += 1
            log.debug("packet received correctly: %r", envelope.data)
            if self.on_payload is not None:
                self.on_payload(envelope.data)
            return self.policy.signal_for(intact=True)

        self.faults += 1
        log.debug("packet received with errors (crc=%d)", envelope.crc)
        return self.policy.signal_for(intact=False)
