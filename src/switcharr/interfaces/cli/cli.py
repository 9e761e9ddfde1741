from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import structlog
import yaml

from switcharr.domain.entities.sources import ScheduleOptions, SourceCandidate, SourceResult
from switcharr.infrastructure.config import AppConfig, load_config
from switcharr.infrastructure.logging.setup import configure_logging
from switcharr.interfaces.composition import lifespan

log = structlog.get_logger(__name__)


def _parse_args(argv: Iterable[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="switcharr")

    # Config wiring flags (no business logic)
    parser.add_argument("--config", default=None, help="Path to YAML config file.")
    parser.add_argument("--dotenv", default=None, help="Path to .env file.")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override log level.",
    )
    parser.add_argument(
        "--log-format",
        default=None,
        choices=["json", "console"],
        help="Override log format.",
    )
    parser.add_argument(
        "--cache-backend",
        default=None,
        choices=["memory", "diskcache", "redis"],
        help="Override persistence backend.",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    select = sub.add_parser("select", help="Probe candidate URLs and rank them.")
    select.add_argument("urls", nargs="*", help="Candidate URLs (input order kept).")
    select.add_argument(
        "--file",
        default=None,
        help="YAML/JSON list of candidates (strings or {url, priority, name}).",
    )
    select.add_argument(
        "--mode",
        default=None,
        choices=["fast", "balanced", "comprehensive"],
        help="Probing mode (default from config).",
    )
    select.add_argument(
        "--best",
        type=int,
        default=None,
        metavar="N",
        help="Return the N best available sources instead of streaming.",
    )
    select.add_argument("--concurrency", type=int, default=None, help="Probes in flight.")

    stats = sub.add_parser("stats", help="Show switch statistics.")
    stats.add_argument("--history", type=int, default=0, metavar="N", help="Include last N switches.")
    stats.add_argument("--clear", action="store_true", help="Delete the switch history.")

    store = sub.add_parser("store", help="Show learned source performance.")
    store.add_argument("--clear", action="store_true", help="Forget all learned sources.")

    return parser.parse_args(argv)


def _candidate_from(item: Any, index: int) -> SourceCandidate:
    if isinstance(item, str):
        return SourceCandidate(source=item, episode_url=item)
    if isinstance(item, dict):
        url = item.get("url", item.get("episode_url"))
        return SourceCandidate(
            source=item,
            episode_url=url,
            priority=item.get("priority"),
            name=str(item.get("name", "")),
        )
    raise ValueError(f"Candidate #{index} must be a string or a mapping, got {type(item)!r}")


def load_candidates(urls: Iterable[str], file: Path | None = None) -> list[SourceCandidate]:
    """Candidates from a YAML/JSON file (first) followed by plain URLs."""
    candidates: list[SourceCandidate] = []
    if file is not None:
        data = yaml.safe_load(file.read_text(encoding="utf-8"))  # JSON is valid YAML
        if isinstance(data, dict):
            data = data.get("candidates", [])
        if not isinstance(data, list):
            raise ValueError(f"Candidate file must hold a list, got {type(data)!r}")
        candidates.extend(_candidate_from(item, i) for i, item in enumerate(data))
    candidates.extend(SourceCandidate(source=u, episode_url=u) for u in urls)
    return candidates


def _result_row(item: SourceResult) -> dict[str, Any]:
    layer2 = item.result.layer2
    layer3 = item.result.layer3
    return {
        "url": item.url,
        "name": item.candidate.name or None,
        "available": item.available,
        "score": item.score,
        "layers": list(item.result.layers_used),
        "ping_ms": round(layer2.ping_ms, 1) if layer2 else None,
        "quality": layer3.quality if layer3 else None,
        "index": item.index,
        "available_count": item.available_count,
        "total_count": item.total_count,
    }


def _emit(payload: Any) -> None:
    sys.stdout.write(json.dumps(payload, ensure_ascii=False) + "\n")
    sys.stdout.flush()


async def _run_select(config: AppConfig, args: argparse.Namespace) -> int:
    candidates = load_candidates(args.urls, Path(args.file) if args.file else None)
    if not candidates:
        log.error("no_candidates_given")
        return 2

    async with lifespan(config) as state:
        if args.best is not None:
            results = await state.selector.select_best_sources(candidates, args.best)
            for item in results:
                _emit(_result_row(item))
            return 0 if results else 1

        base = state.selector.options
        options = ScheduleOptions(
            max_concurrency=args.concurrency or base.max_concurrency,
            early_termination=base.early_termination,
            min_available_sources=base.min_available_sources,
            mode=args.mode or base.mode,
        )
        found = 0
        async for item in state.selector.select_progressive(candidates, options):
            found += int(item.available)
            _emit(_result_row(item))
        return 0 if found else 1


async def _run_stats(config: AppConfig, args: argparse.Namespace) -> int:
    async with lifespan(config) as state:
        if args.clear:
            state.ledger.clear()
            log.info("switch_history_cleared")
            return 0
        summary = state.ledger.export()
        history = summary.pop("history")
        if args.history > 0:
            summary["history"] = history[-args.history:]
        _emit(summary)
    return 0


async def _run_store(config: AppConfig, args: argparse.Namespace) -> int:
    async with lifespan(config) as state:
        if args.clear:
            state.store.clear()
            log.info("performance_store_cleared")
            return 0
        _emit({"entries": state.store.export()})
    return 0


_COMMANDS = {
    "select": _run_select,
    "stats": _run_stats,
    "store": _run_store,
}


def start(argv: Iterable[str] | None = None) -> int:
    """Process entrypoint: load config once, configure logging, dispatch."""
    if argv is None:
        argv = sys.argv[1:]

    args = _parse_args(argv)

    config_path = Path(args.config) if args.config else None
    dotenv_path = Path(args.dotenv) if args.dotenv else None

    cli_overrides: dict[str, Any] = {}
    if args.log_level:
        cli_overrides["log_level"] = args.log_level
    if args.log_format:
        cli_overrides["log_format"] = args.log_format
    if args.cache_backend:
        cli_overrides["cache_backend"] = args.cache_backend

    config = load_config(
        config_path=config_path,
        dotenv_path=dotenv_path,
        cli_overrides=cli_overrides,
    )
    # stdout carries the JSON result rows.
    configure_logging(config, stdout_logs=False)

    return asyncio.run(_COMMANDS[args.command](config, args))


if __name__ == "__main__":
    raise SystemExit(start())
