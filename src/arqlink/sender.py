from __future__ import annotations

import enum
import logging
from concurrent.futures import Future
from dataclasses import dataclass
from functools import partial
from typing import Callable, Optional

from .clock import EventLoop, Timer
from .errors import DecodeError, DeliveryFailed
from .net import ImpairmentChannel
from .packet import Envelope, Signal, decode_signal, encode_signal
from .policy import AcknowledgmentPolicy, Outcome

log = logging.getLogger(__name__)


@dataclass(slots=True)
class Metrics:
    sends: int = 0
    transmissions: int = 0
    retransmits: int = 0
    timeouts: int = 0
    completions: int = 0
    failures: int = 0
    naks: int = 0
    ignored_responses: int = 0
    decode_errors: int = 0


class State(enum.Enum):
    SENT = "sent"
    AWAITING_RESPONSE = "awaiting-response"
    COMPLETED = "completed"
    FAILED = "failed"


TRANSITIONS: dict[State, frozenset[State]] = {
    State.SENT: frozenset({State.AWAITING_RESPONSE, State.FAILED}),
    State.AWAITING_RESPONSE: frozenset({State.SENT, State.COMPLETED, State.FAILED}),
    State.COMPLETED: frozenset(),
    State.FAILED: frozenset(),
}


class AttemptState:
    """One logical send: the envelope, its attempt counter and its timer.

    Completion is single-winner. Whichever of {completing response, timeout}
    arrives first acts, the pending timer is cancelled, and everything that
    arrives afterwards is counted and dropped. Only responses to
    the attempt currently outstanding may act; a response to a superseded
    attempt is stale.
    """

    def __init__(
        self,
        sender: "ReliableSender",
        envelope: Envelope,
        on_complete: Optional[Callable[[], None]],
    ):
        self.sender = sender
        self.envelope = envelope
        self.frame = envelope.to_bytes()
        self.on_complete = on_complete
        self.future: Future = Future()
        self.state = State.SENT
        self.attempts = 0
        self.timer: Optional[Timer] = None

    @property
    def done(self) -> bool:
        return self.state in (State.COMPLETED, State.FAILED)

    def _move(self, new: State) -> None:
        if new not in TRANSITIONS[self.state]:
            raise RuntimeError(f"illegal transition {self.state.value} -> {new.value}")
        self.state = new

    def _cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None

    def transmit(self) -> None:
        s = self.sender
        if self.future.cancelled():
            log.debug("send abandoned by producer after %d attempts", self.attempts)
            self._cancel_timer()
            self._move(State.FAILED)
            return
        if s.max_attempts is not None and self.attempts >= s.max_attempts:
            self._fail()
            return

        self._cancel_timer()
        if self.attempts:
            self._move(State.SENT)
            s.metrics.retransmits += 1
        self.attempts += 1
        s.metrics.transmissions += 1
        log.debug("sending packet (attempt %d): %r", self.attempts, self.frame)
        s.transport(self, self.attempts)
        self._move(State.AWAITING_RESPONSE)

        if s.timeout is not None:
            self.timer = s.loop.call_later(s.timeout, self.on_timeout, self.attempts)

    def on_response(self, signal: Signal, attempt: int) -> None:
        s = self.sender
        if self.done:
            s.metrics.ignored_responses += 1
            log.debug("late %s for attempt %d ignored", signal.value, attempt)
            return

        if signal is Signal.NAK:
            s.metrics.naks += 1

        outcome = s.policy.react(signal)
        if outcome is not Outcome.IGNORE and attempt != self.attempts:
            # superseded: the timeout for this attempt has already acted
            s.metrics.ignored_responses += 1
            log.debug("stale %s for attempt %d (current %d)", signal.value, attempt, self.attempts)
            return

        if outcome is Outcome.COMPLETE:
            log.info("%s received; data delivered after %d attempts", signal.value, self.attempts)
            self._complete()
        elif outcome is Outcome.RETRANSMIT:
            log.debug("%s received; retransmitting", signal.value)
            self.transmit()
        else:
            s.metrics.ignored_responses += 1

    def on_timeout(self, attempt: int) -> None:
        s = self.sender
        if self.done or attempt != self.attempts:
            return
        self.timer = None
        s.metrics.timeouts += 1
        if s.policy.on_timeout is Outcome.COMPLETE:
            log.info("no NAK within %s; assuming data delivered", s.timeout)
            self._complete()
        else:
            log.debug("timeout! retransmitting (attempt %d)", attempt)
            self.transmit()

    def _complete(self) -> None:
        self._cancel_timer()
        self._move(State.COMPLETED)
        self.sender.metrics.completions += 1
        if self.future.cancelled():
            log.debug("delivered after the producer abandoned the send")
            return
        self.future.set_result(self.attempts)
        if self.on_complete is not None:
            self.on_complete()

    def _fail(self) -> None:
        self._cancel_timer()
        self._move(State.FAILED)
        self.sender.metrics.failures += 1
        log.warning("giving up after %d attempts", self.attempts)
        if not self.future.done():
            self.future.set_exception(DeliveryFailed(self.attempts))


class ReliableSender:
    """Generic retransmission algorithm, parameterized by a policy."""

    def __init__(
        self,
        channel: ImpairmentChannel,
        policy: AcknowledgmentPolicy,
        deliver: Callable[[bytes], Signal],
        *,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ):
        self.channel = channel
        self.policy = policy
        self.deliver = deliver
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.metrics = Metrics()

    @property
    def loop(self) -> EventLoop:
        return self.channel.loop

    def send(self, payload: bytes, on_complete: Optional[Callable[[], None]] = None) -> Future:
        self.metrics.sends += 1
        attempt = AttemptState(self, Envelope.seal(payload), on_complete)
        attempt.transmit()
        return attempt.future

    def transport(self, attempt: AttemptState, attempt_no: int) -> None:
        self.channel.send(attempt.frame, partial(self._on_delivered, attempt, attempt_no))

    def _on_delivered(self, attempt: AttemptState, attempt_no: int, raw: bytes) -> None:
        try:
            signal = self.deliver(raw)
        except DecodeError as exc:
            # A frame mangled beyond parsing is still a damaged delivery.
            self.metrics.decode_errors += 1
            log.debug("peer could not decode frame: %s", exc)
            signal = self.policy.signal_for(intact=False)
        self.channel.send(encode_signal(signal), partial(self._on_response, attempt, attempt_no))

    def _on_response(self, attempt: AttemptState, attempt_no: int, raw: bytes) -> None:
        attempt.on_response(decode_signal(raw), attempt_no)
