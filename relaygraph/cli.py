"""relaygraph.cli

Command line entry point. Read-only: there is no signer here, so nothing is
ever published from the command line.

Design constraints:
- argparse-based.
- Lazy imports: the engine (aiohttp, httpx) loads only when a command runs.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any


@dataclass(frozen=True)
class CliContext:
    config_path: Path | None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="relaygraph",
        description="Query social graph, threads and zaps across relays.",
    )
    parser.add_argument("--version", action="store_true", help="Print version and exit.")
    parser.add_argument("--config", type=Path, default=None, help="Path to a YAML config (default: config/default.yaml).")

    sub = parser.add_subparsers(dest="command")

    p_profile = sub.add_parser("profile", help="Show an identity's profile")
    p_profile.add_argument("pubkey")

    p_follows = sub.add_parser("follows", help="Show who an identity follows")
    p_follows.add_argument("pubkey")
    p_follows.add_argument("--followers", action="store_true", help="List followers instead.")

    p_thread = sub.add_parser("thread", help="Print the reply tree under an event")
    p_thread.add_argument("event_id")
    p_thread.add_argument("--depth", type=int, default=None)

    p_zaps = sub.add_parser("zaps", help="Total zaps received by an event")
    p_zaps.add_argument("event_id")

    p_relay = sub.add_parser("relay", help="Show or change the selected relay")
    p_relay.add_argument("url", nargs="?", default=None)

    return parser


def _load_engine(ctx: CliContext):
    from relaygraph.core.config import Config
    from relaygraph.core.logs import configure_logging
    from relaygraph.engine import SocialEngine

    config = Config.from_yaml(ctx.config_path) if ctx.config_path else Config.from_repo_defaults()
    configure_logging(config.logging, stream=sys.stderr)
    return SocialEngine(config)


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


async def _cmd_profile(engine, args: argparse.Namespace) -> int:
    profile = await engine.profiles.get_profile(args.pubkey)
    if profile is None:
        print(f"no profile found for {args.pubkey}", file=sys.stderr)
        return 1
    _print_json({"pubkey": profile.pubkey, **profile.metadata.model_dump(exclude_none=True)})
    return 0


async def _cmd_follows(engine, args: argparse.Namespace) -> int:
    if args.followers:
        for pk in await engine.follows.get_followers(args.pubkey):
            print(pk)
        return 0
    state = await engine.follows.get_follow_state(args.pubkey)
    for contact in state.contacts:
        print(contact.pubkey)
    print(f"# {state.count} followed", file=sys.stderr)
    return 0


async def _cmd_thread(engine, args: argparse.Namespace) -> int:
    view = await engine.threads.build_thread(args.event_id, max_depth=args.depth)
    if view.root is None:
        print(f"event not found: {args.event_id}", file=sys.stderr)
        return 1
    for node in view.walk():
        line = node.event.content.replace("\n", " ")[:80]
        more = f" (+{node.hidden_reply_count} more)" if node.hidden_reply_count else ""
        print(f"{'  ' * node.depth}{node.id[:12]} {line}{more}")
    return 0


async def _cmd_zaps(engine, args: argparse.Namespace) -> int:
    totals = await engine.zaps.get_zap_totals(args.event_id)
    _print_json({"count": totals.count, "total_sats": totals.total_sats, "unparsed": len(totals.unparsed)})
    return 0


async def _cmd_relay(engine, args: argparse.Namespace) -> int:
    if args.url is None:
        print(engine.local_state.state.relay_url)
        return 0
    try:
        await engine.switch_relay(args.url)
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    print(engine.local_state.state.relay_url)
    return 0


async def _run(ctx: CliContext, fn: Callable[[Any, argparse.Namespace], Awaitable[int]], args: argparse.Namespace) -> int:
    engine = _load_engine(ctx)
    try:
        return await fn(engine, args)
    finally:
        await engine.aclose()


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        from relaygraph import __version__

        print(f"relaygraph v{__version__}")
        return 0

    if not args.command:
        parser.print_help()
        return 2

    dispatch: dict[str, Callable[[Any, argparse.Namespace], Awaitable[int]]] = {
        "profile": _cmd_profile,
        "follows": _cmd_follows,
        "thread": _cmd_thread,
        "zaps": _cmd_zaps,
        "relay": _cmd_relay,
    }

    fn = dispatch.get(str(args.command))
    if fn is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 2

    from relaygraph.core.exceptions import ConfigError

    try:
        return int(asyncio.run(_run(CliContext(config_path=args.config), fn, args)))
    except ConfigError as e:
        print(f"config error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
