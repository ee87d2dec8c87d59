from __future__ import annotations

import argparse
import json
import logging
import random
from dataclasses import asdict

from .bench import DEFAULT_PAYLOAD, run_benchmark
from .clock import EventLoop
from .constants import DEFAULT_MAX_ATTEMPTS, DEFAULT_MAX_DELAY
from .layer import ReliabilityLayer
from .net import ChannelConfig, ImpairmentChannel
from .policy import POLICIES


def _config(args: argparse.Namespace) -> ChannelConfig:
    return ChannelConfig(
        drop_probability=args.drop,
        delay_probability=args.delay,
        corruption_probability=args.corrupt,
        max_delay=args.max_delay,
    )


def _max_attempts(args: argparse.Namespace) -> int | None:
    return args.max_attempts if args.max_attempts > 0 else None


def _emit(payload: dict, as_json: bool) -> None:
    print(json.dumps(payload, indent=2) if as_json else payload)


def cmd_demo(args: argparse.Namespace) -> int:
    """Send one message with each policy over a single shared channel."""
    loop = EventLoop()
    channel = ImpairmentChannel(_config(args), loop, random.Random(args.seed), name="demo")
    message = args.message.encode("utf-8")

    layers = {}
    done: dict[str, float] = {}
    for name, policy in POLICIES.items():
        kw = {"timeout": args.timeout} if args.timeout is not None else {}
        peer = ReliabilityLayer(channel, policy)
        layer = ReliabilityLayer(channel, policy, peer=peer, max_attempts=_max_attempts(args), **kw)
        layer.send(message, lambda name=name: done.setdefault(name, loop.now))
        layers[name] = layer

    loop.run()

    for name, layer in layers.items():
        payload = {
            "role": "demo",
            "policy": name,
            "completed_at": done.get(name),
            **asdict(layer.metrics),
        }
        _emit(payload, args.json)
    return 0 if len(done) == len(layers) else 1


def cmd_bench(args: argparse.Namespace) -> int:
    kw = {"timeout": args.timeout} if args.timeout is not None else {}
    r = run_benchmark(
        policy=args.policy,
        count=args.count,
        config=_config(args),
        max_attempts=_max_attempts(args),
        seed=args.seed,
        **kw,
    )
    payload = {"role": "bench", **asdict(r), "attempts_per_send": r.attempts_per_send}
    _emit(payload, args.json)
    return 0


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(prog="arqlink", description="ARQ policies over a simulated lossy channel.")
    p.add_argument("--log-level", default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    sub = p.add_subparsers(dest="cmd", required=True)

    def add_common(x: argparse.ArgumentParser) -> None:
        x.add_argument("--drop", type=float, default=0.2, help="drop probability")
        x.add_argument("--delay", type=float, default=0.3, help="delay probability")
        x.add_argument("--corrupt", type=float, default=0.1, help="single-bit corruption probability")
        x.add_argument("--max-delay", type=float, default=DEFAULT_MAX_DELAY)
        x.add_argument("--timeout", type=float, default=None, help="sender timeout (policy default if omitted)")
        x.add_argument("--max-attempts", type=int, default=DEFAULT_MAX_ATTEMPTS, help="0 retries forever")
        x.add_argument("--seed", type=int, default=None)
        x.add_argument("--json", action="store_true")

    demo = sub.add_parser("demo", help="one message per policy over a shared channel")
    add_common(demo)
    demo.add_argument("--message", default=DEFAULT_PAYLOAD.decode("utf-8"))
    demo.set_defaults(func=cmd_demo)

    bench = sub.add_parser("bench", help="many sends with one policy")
    add_common(bench)
    bench.add_argument("--policy", choices=sorted(POLICIES), default="ack-nak")
    bench.add_argument("--count", type=int, default=1000)
    bench.set_defaults(func=cmd_bench)

    args = p.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s [%(levelname)s] %(message)s")
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
