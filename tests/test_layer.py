from __future__ import annotations

import json
import random

import pytest

from arqlink.clock import EventLoop
from arqlink.crc import crc8
from arqlink.errors import DecodeError, DeliveryFailed
from arqlink.layer import ReliabilityLayer, negative_only, positive_negative, positive_only
from arqlink.net import ChannelConfig, ImpairmentChannel
from arqlink.packet import Envelope, Signal
from arqlink.policy import NEGATIVE_ONLY, POSITIVE_NEGATIVE, POSITIVE_ONLY


class ScriptedChannel(ImpairmentChannel):
    """Impairs chosen calls by index: forward frames and responses alike."""

    def __init__(self, drop=(), corrupt=(), delays=None, seed=0):
        super().__init__(ChannelConfig.lossless(), EventLoop(), random.Random(seed), name="scripted")
        self.drop_calls = drop
        self.corrupt_calls = corrupt
        self.delays = delays or {}

    @property
    def index(self):
        return self.stats.sent - 1

    def should_drop(self):
        return self._hit(self.drop_calls)

    def should_corrupt(self):
        return self._hit(self.corrupt_calls)

    def sample_delay(self):
        return self.delays.get(self.index, 0.0)

    def _hit(self, calls):
        return calls(self.index) if callable(calls) else self.index in calls


def pair(factory, channel, **kw):
    received = []
    peer = factory(channel, on_payload=received.append)
    layer = factory(channel, peer=peer, **kw)
    return layer, peer, received


def test_clean_channel_end_to_end():
    ch = ScriptedChannel()
    layer, _, received = pair(positive_negative, ch)
    calls = []
    fut = layer.send(b"Hello, reliable world!", lambda: calls.append(ch.loop.now))
    ch.loop.run()
    assert calls == [0]
    assert received == [b"Hello, reliable world!"]
    assert fut.result() == 1
    assert layer.metrics.retransmits == 0


@pytest.mark.parametrize("factory", [positive_negative, positive_only, negative_only])
def test_every_policy_completes_once_on_clean_channel(factory):
    ch = ScriptedChannel()
    layer, _, received = pair(factory, ch)
    calls = []
    layer.send(b"abc", lambda: calls.append(1))
    ch.loop.run()
    assert calls == [1]
    assert received == [b"abc"]
    assert ch.loop.pending == 0


def test_recovers_from_one_corruption():
    ch = ScriptedChannel(corrupt={0})
    layer, _, received = pair(positive_negative, ch)
    calls = []
    fut = layer.send(b"hello", lambda: calls.append(1))
    ch.loop.run()
    assert calls == [1]
    assert layer.metrics.retransmits == 1
    assert layer.metrics.naks == 1
    assert fut.result() == 2
    assert received == [b"hello"]


def test_timeout_triggers_one_retransmission():
    ch = ScriptedChannel(drop={0})
    layer, _, received = pair(positive_only, ch, timeout=50)
    calls = []
    layer.send(b"hello", lambda: calls.append(ch.loop.now))
    ch.loop.run()
    assert calls == [50]
    assert layer.metrics.timeouts == 1
    assert layer.metrics.retransmits == 1
    assert received == [b"hello"]


def test_positive_only_ignores_corrupt_delivery_until_timeout():
    ch = ScriptedChannel(corrupt={0})
    layer, _, _ = pair(positive_only, ch, timeout=50)
    calls = []
    layer.send(b"hello", lambda: calls.append(ch.loop.now))
    ch.loop.run()
    assert calls == [50]
    assert layer.metrics.ignored_responses == 1


def test_late_ack_after_retransmission_does_not_complete_twice():
    # first delivery arrives at 80, after the 50-unit timeout fired
    ch = ScriptedChannel(delays={0: 80})
    layer, peer, _ = pair(positive_only, ch, timeout=50)
    calls = []
    layer.send(b"hello", lambda: calls.append(ch.loop.now))
    ch.loop.run()
    assert calls == [50]
    assert peer.receiver.delivered == 2
    assert layer.metrics.ignored_responses == 1
    assert layer.metrics.completions == 1


def test_stale_nak_does_not_retransmit():
    # attempt 1: corrupted, arrives at 80 -> NAK for a superseded attempt
    # attempt 2: sent at 50, arrives at 250
    # attempt 3: sent at 100 on timeout, ACKed immediately
    ch = ScriptedChannel(corrupt={0}, delays={0: 80, 1: 200})
    layer, _, _ = pair(positive_negative, ch, timeout=50)
    calls = []
    layer.send(b"hello", lambda: calls.append(ch.loop.now))
    ch.loop.run()
    m = layer.metrics
    assert calls == [100]
    assert m.transmissions == 3
    assert m.timeouts == 2
    assert m.naks == 1
    assert m.ignored_responses == 2


def test_bounded_retry_raises_delivery_failed():
    ch = ScriptedChannel(drop=lambda i: True)
    layer, _, _ = pair(positive_only, ch, timeout=10, max_attempts=3)
    calls = []
    fut = layer.send(b"lost", lambda: calls.append(1))
    ch.loop.run()
    assert calls == []
    with pytest.raises(DeliveryFailed) as info:
        fut.result(timeout=0)
    assert info.value.attempts == 3
    assert layer.metrics.transmissions == 3
    assert layer.metrics.failures == 1
    assert ch.loop.pending == 0


def test_always_corrupting_forward_path_fails_after_max_attempts():
    ch = ScriptedChannel(corrupt=lambda i: i % 2 == 0)
    layer, _, received = pair(positive_negative, ch, max_attempts=4)
    fut = layer.send(b"hello")
    ch.loop.run()
    assert isinstance(fut.exception(timeout=0), DeliveryFailed)
    assert layer.metrics.naks == 4
    assert layer.metrics.transmissions == 4
    assert received == []


def test_unbounded_retry_when_max_attempts_is_none():
    ch = ScriptedChannel(drop=lambda i: i < 40)
    layer, _, _ = pair(positive_only, ch, timeout=1, max_attempts=None)
    fut = layer.send(b"x")
    ch.loop.run()
    assert fut.result(timeout=0) == 41


def test_negative_only_completes_on_silence():
    # the NONE response is dropped; the quiet period presumes delivery
    ch = ScriptedChannel(drop={1})
    layer, _, received = pair(negative_only, ch, timeout=100)
    calls = []
    layer.send(b"hello", lambda: calls.append(ch.loop.now))
    ch.loop.run()
    assert calls == [100]
    assert received == [b"hello"]
    assert layer.metrics.timeouts == 1


def test_negative_only_presumes_delivery_of_dropped_frame():
    ch = ScriptedChannel(drop={0})
    layer, _, received = pair(negative_only, ch, timeout=100)
    calls = []
    layer.send(b"hello", lambda: calls.append(1))
    ch.loop.run()
    assert calls == [1]
    assert received == []


def test_negative_only_retransmits_on_nak():
    ch = ScriptedChannel(corrupt={0})
    layer, _, received = pair(negative_only, ch)
    calls = []
    layer.send(b"hello", lambda: calls.append(ch.loop.now))
    ch.loop.run()
    assert calls == [0]
    assert layer.metrics.retransmits == 1
    assert received == [b"hello"]


def test_concurrent_sends_are_independent():
    ch = ScriptedChannel(drop={0})
    layer, _, received = pair(positive_only, ch, timeout=20)
    done = []
    layer.send(b"one", lambda: done.append("one"))
    layer.send(b"two", lambda: done.append("two"))
    ch.loop.run()
    assert sorted(done) == ["one", "two"]
    assert sorted(received) == [b"one", b"two"]
    assert layer.metrics.retransmits == 1


def test_loopback_without_peer():
    ch = ScriptedChannel()
    got = []
    layer = positive_negative(ch, on_payload=got.append)
    layer.send(b"self")
    ch.loop.run()
    assert got == [b"self"]


@pytest.mark.parametrize(
    "policy,good,fault",
    [
        (POSITIVE_NEGATIVE, Signal.ACK, Signal.NAK),
        (POSITIVE_ONLY, Signal.ACK, Signal.NONE),
        (NEGATIVE_ONLY, Signal.NONE, Signal.NAK),
    ],
)
def test_receive_signal_table(policy, good, fault):
    layer = ReliabilityLayer(ScriptedChannel(), policy)
    raw = Envelope.seal(b"abc").to_bytes()
    assert layer.receive(raw) is good
    wrong_crc = json.dumps({"data": "abc", "crc": (crc8(b"abc") + 1) % 256}).encode()
    assert layer.receive(wrong_crc) is fault


def test_receive_malformed_raises():
    layer = positive_negative(ScriptedChannel())
    with pytest.raises(DecodeError):
        layer.receive(b'{"data": "abc"}')
    assert layer.receiver.delivered == 0
    assert layer.receiver.faults == 0


def test_default_timeouts():
    ch = ScriptedChannel()
    assert positive_negative(ch).timeout == 1000
    assert positive_only(ch).timeout == 1000
    assert negative_only(ch).timeout == 1000


@pytest.mark.parametrize("kw", [{"timeout": 0}, {"timeout": -5}, {"max_attempts": 0}])
def test_invalid_layer_args(kw):
    with pytest.raises(ValueError):
        positive_only(ScriptedChannel(), **kw)


class CrcDigitChannel(ScriptedChannel):
    """Corruption always lands on the last digit of the crc field."""

    def corrupt(self, raw):
        buf = bytearray(raw)
        buf[raw.rindex(b"}") - 1] ^= 0x01
        return bytes(buf)


def test_positive_negative_recovers_from_dropped_frame():
    ch = ScriptedChannel(drop={0})
    layer, _, received = pair(positive_negative, ch)
    calls = []
    fut = layer.send(b"hello", lambda: calls.append(ch.loop.now))
    ch.loop.run()
    assert calls == [1000]
    assert fut.result(timeout=0) == 2
    assert layer.metrics.timeouts == 1
    assert received == [b"hello"]


def test_positive_negative_fails_when_every_frame_is_lost():
    ch = ScriptedChannel(drop=lambda i: True)
    layer, _, _ = pair(positive_negative, ch, timeout=10, max_attempts=3)
    fut = layer.send(b"lost")
    ch.loop.run()
    assert isinstance(fut.exception(timeout=0), DeliveryFailed)
    assert layer.metrics.transmissions == 3
    assert ch.loop.pending == 0


def test_ack_for_superseded_attempt_is_ignored():
    # attempt 1 arrives at 80 after its timeout fired; attempt 2 is lost;
    # only attempt 3, sent at 100, may complete the send
    ch = ScriptedChannel(delays={0: 80}, drop={1})
    layer, peer, _ = pair(positive_only, ch, timeout=50)
    calls = []
    fut = layer.send(b"hello", lambda: calls.append(ch.loop.now))
    ch.loop.run()
    m = layer.metrics
    assert calls == [100]
    assert fut.result(timeout=0) == 3
    assert m.timeouts == 2
    assert m.transmissions == 3
    assert m.ignored_responses == 1
    assert peer.receiver.delivered == 2


def test_crc_field_corruption_is_an_integrity_fault():
    ch = CrcDigitChannel(corrupt={0})
    layer, peer, received = pair(positive_negative, ch)
    calls = []
    layer.send(b"hello", lambda: calls.append(1))
    ch.loop.run()
    assert calls == [1]
    assert peer.receiver.faults == 1
    assert layer.metrics.decode_errors == 0
    assert layer.metrics.naks == 1
    assert layer.metrics.retransmits == 1
    assert received == [b"hello"]


def test_crc_field_corruption_waits_for_timeout_without_nak():
    ch = CrcDigitChannel(corrupt={0})
    layer, peer, _ = pair(positive_only, ch, timeout=50)
    calls = []
    layer.send(b"hello", lambda: calls.append(ch.loop.now))
    ch.loop.run()
    assert calls == [50]
    assert peer.receiver.faults == 1
    assert layer.metrics.naks == 0
    assert layer.metrics.retransmits == 1


def test_on_complete_skipped_after_producer_cancels():
    ch = ScriptedChannel()
    layer, _, received = pair(positive_negative, ch)
    calls = []
    fut = layer.send(b"hello", lambda: calls.append(1))
    assert fut.cancel()
    ch.loop.run()
    assert calls == []
    assert received == [b"hello"]
    assert ch.loop.pending == 0


def test_future_resolved_before_on_complete_runs():
    ch = ScriptedChannel()
    layer, _, _ = pair(positive_negative, ch)
    seen = []

    def failing_callback():
        seen.append(fut.done())
        raise RuntimeError("producer callback failed")

    fut = layer.send(b"one", failing_callback)
    other = layer.send(b"two")
    with pytest.raises(RuntimeError):
        ch.loop.run()
    assert seen == [True]
    assert fut.result(timeout=0) == 1

    ch.loop.run()
    assert other.result(timeout=0) == 1
