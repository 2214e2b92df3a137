from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from pydantic import ValidationError

from chaoswatch.config import Settings
from chaoswatch.domain.models import FeedKind
from chaoswatch.logging_utils import setup_logging
from chaoswatch.observability import configure_instrumentation, get_instrumentation
from chaoswatch.services.dashboard_runtime import DashboardRuntime
from chaoswatch.services.timeline import CATEGORY_KINDS, FeedFilter

logger = logging.getLogger(__name__)

RuntimeFactory = Callable[[Settings], DashboardRuntime]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chaoswatch",
        description="Live ledger and off-chain state aggregation for the Chaoscoin game",
        epilog="Configuration is read from the environment and an optional .env file.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Poll every source until interrupted")
    run_parser.add_argument(
        "--max-seconds",
        type=float,
        default=None,
        help="Stop after this many seconds (default: run until interrupted)",
    )

    subparsers.add_parser("snapshot", help="Print one chain snapshot as JSON")

    feed_parser = subparsers.add_parser(
        "feed", help="Refresh once and print the unified feed as JSON lines"
    )
    feed_parser.add_argument(
        "--kind",
        action="append",
        choices=[kind.value for kind in FeedKind],
        default=None,
        help="Restrict to a feed kind (repeatable)",
    )
    feed_parser.add_argument("--category", choices=sorted(CATEGORY_KINDS), default=None)
    feed_parser.add_argument("--message-type", default=None, help="Social message type")
    feed_parser.add_argument("--zone", type=int, default=None)
    feed_parser.add_argument("--limit", type=int, default=None)

    agent_parser = subparsers.add_parser("agent", help="Print one agent's details as JSON")
    agent_parser.add_argument("agent_id", type=int)

    subparsers.add_parser(
        "status", help="Refresh once and print per-source status; exit 1 when degraded"
    )
    subparsers.add_parser("health", help="Check RPC, off-chain API and state DB")
    return parser


def main(
    argv: Sequence[str] | None = None,
    *,
    runtime_factory: RuntimeFactory | None = None,
) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        settings = Settings()
    except ValidationError as exc:
        print(f"Configuration error:\n{exc}", file=sys.stderr)
        return 2
    setup_logging(settings.log_level)
    configure_instrumentation(
        enabled=settings.observability_enabled,
        metrics_exporter=settings.observability_metrics_exporter,
        otlp_endpoint=settings.observability_otlp_endpoint,
        prometheus_port=settings.observability_prometheus_port,
    )
    factory = runtime_factory or DashboardRuntime.from_settings
    try:
        return asyncio.run(_dispatch(args, factory(settings)))
    except KeyboardInterrupt:
        logger.info("chaoswatch_interrupted", extra={"extra": {"command": args.command}})
        return 0
    finally:
        get_instrumentation().flush()


async def _dispatch(args: argparse.Namespace, runtime: DashboardRuntime) -> int:
    handlers: dict[str, Callable[[], Awaitable[int]]] = {
        "run": lambda: run_dashboard(runtime, max_seconds=args.max_seconds),
        "snapshot": lambda: run_snapshot(runtime),
        "feed": lambda: run_feed(
            runtime,
            feed_filter=_feed_filter(args),
            limit=args.limit,
        ),
        "agent": lambda: run_agent(runtime, args.agent_id),
        "status": lambda: run_status(runtime),
        "health": lambda: run_health(runtime),
    }
    try:
        return await handlers[args.command]()
    finally:
        await _close_best_effort(runtime, "dashboard runtime")


def _feed_filter(args: argparse.Namespace) -> FeedFilter | None:
    kinds = frozenset(FeedKind(kind) for kind in args.kind) if args.kind else None
    narrowing = (args.category, args.message_type, args.zone)
    if kinds is None and all(value is None for value in narrowing):
        return None
    return FeedFilter(
        kinds=kinds, category=args.category, message_type=args.message_type, zone=args.zone
    )


async def run_dashboard(runtime: DashboardRuntime, *, max_seconds: float | None) -> int:
    await runtime.run(max_seconds=max_seconds)
    return 0


async def run_snapshot(runtime: DashboardRuntime) -> int:
    snapshot = await runtime.snapshot.poll()
    if snapshot is None:
        _print_json({"error": runtime.snapshot.status.last_error})
        return 1
    _print_json(snapshot.as_dict())
    return 0


async def run_feed(
    runtime: DashboardRuntime, *, feed_filter: FeedFilter | None, limit: int | None
) -> int:
    runtime.restore()
    await runtime.refresh_all()
    items = runtime.timeline(feed_filter, max_items=limit)
    for item in items:
        record = {
            "kind": item.kind.value,
            "sort_key": item.sort_key,
            "item_id": item.item_id,
            "payload": dict(item.payload),
        }
        print(json.dumps(record, sort_keys=True, default=str))
    runtime.flush()
    return 0


async def run_agent(runtime: DashboardRuntime, agent_id: int) -> int:
    details = await runtime.agent_details(agent_id)
    if details is None:
        _print_json({"error": f"agent {agent_id} unavailable"})
        return 1
    _print_json(details.to_dict())
    return 0


async def run_status(runtime: DashboardRuntime) -> int:
    runtime.restore()
    await runtime.refresh_all()
    status = runtime.status()
    _print_json(status)
    return 1 if _degraded(status) else 0


async def run_health(runtime: DashboardRuntime) -> int:
    checks = await runtime.health()
    _print_json(checks)
    return 0 if checks["ok"] else 1


def _degraded(status: dict[str, Any]) -> bool:
    sections = [
        status["snapshot"],
        status["agents"],
        status["cosmic"],
        status["activity"],
        *status["offchain"].values(),
        *status["jobs"].values(),
    ]
    if status["snapshot"]["stale_fields"]:
        return True
    return any(section.get("last_error") for section in sections)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, sort_keys=True, default=str))


async def _close_best_effort(resource: DashboardRuntime, label: str) -> None:
    try:
        await resource.close()
    except Exception:  # noqa: BLE001
        logger.warning(
            "resource_close_failed", extra={"extra": {"resource": label}}, exc_info=True
        )


if __name__ == "__main__":
    raise SystemExit(main())
