# src/main.py — v2
"""CLI entry point — analyze, estimate, report, usage, prompts, sweep, serve.

Usage:
    galley analyze <file> --owner <id> [--pipeline full_analysis_v1]
    galley estimate <file> [--pipeline full_analysis_v1]
    galley report <report_id>
    galley usage <owner_id> [--period YYYY-MM]
    galley prompts
    galley sweep
    galley serve [--host 127.0.0.1] [--port 8000]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from galley.version import __version__

logger = logging.getLogger(__name__)

DEFAULT_PIPELINE = "full_analysis_v1"


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    from galley.config.settings import load_settings
    from galley.logging.logger import setup_logging

    settings = load_settings()
    setup_logging(
        level="DEBUG" if args.verbose else settings.log_level,
        log_format=settings.log_format,
        log_file=str(settings.log_file) if settings.log_file else None,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )

    if args.command == "serve":
        return _cmd_serve(args, settings)

    try:
        return asyncio.run(args.func(args, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="galley",
        description=f"galley v{__version__} — Multi-agent manuscript analysis",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- analyze ---
    p_analyze = subparsers.add_parser(
        "analyze", help="Register a manuscript and run a report to completion",
    )
    p_analyze.add_argument("file", type=Path, help="Path to a UTF-8 text manuscript")
    p_analyze.add_argument("--owner", default="local", help="Owner id (default: local)")
    p_analyze.add_argument("--title", default=None, help="Title (default: file stem)")
    p_analyze.add_argument("--genre", default="general", help="Genre (default: general)")
    p_analyze.add_argument(
        "-p", "--pipeline", default=DEFAULT_PIPELINE,
        help=f"Pipeline spec id (default: {DEFAULT_PIPELINE})",
    )
    p_analyze.set_defaults(func=_cmd_analyze)

    # --- estimate ---
    p_estimate = subparsers.add_parser(
        "estimate", help="Estimate the cost of a pipeline on a manuscript",
    )
    p_estimate.add_argument("file", type=Path, help="Path to a UTF-8 text manuscript")
    p_estimate.add_argument("-p", "--pipeline", default=DEFAULT_PIPELINE)
    p_estimate.set_defaults(func=_cmd_estimate)

    # --- report ---
    p_report = subparsers.add_parser("report", help="Show a stored report")
    p_report.add_argument("report_id")
    p_report.set_defaults(func=_cmd_report)

    # --- usage ---
    p_usage = subparsers.add_parser("usage", help="Show an owner's ledger usage")
    p_usage.add_argument("owner_id")
    p_usage.add_argument("--period", default=None, help="Billing period YYYY-MM (default: current)")
    p_usage.set_defaults(func=_cmd_usage)

    # --- prompts ---
    p_prompts = subparsers.add_parser("prompts", help="List active prompt templates")
    p_prompts.set_defaults(func=_cmd_prompts)

    # --- sweep ---
    p_sweep = subparsers.add_parser("sweep", help="Force-fail stale reports")
    p_sweep.set_defaults(func=_cmd_sweep)

    # --- serve ---
    p_serve = subparsers.add_parser("serve", help="Run the HTTP API")
    p_serve.add_argument("--host", default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=8000)
    p_serve.set_defaults(func=None)

    return parser


def _read_manuscript(path: Path) -> str | None:
    if not path.is_file():
        logger.error("File not found: %s", path)
        return None
    return path.read_text(encoding="utf-8")


async def _cmd_analyze(args: argparse.Namespace, settings: Any) -> int:
    """Register the file, admit a report and wait for it."""
    from galley.api.models import ReportResponse
    from galley.pipeline.context import build_context
    from galley.pipeline.dispatcher import JobDispatcher

    text = _read_manuscript(args.file)
    if text is None:
        return 1

    services = build_context(settings)
    try:
        manuscript = await services.manuscripts.register(
            args.owner, args.title or args.file.stem, text, genre=args.genre,
        )
        dispatcher = JobDispatcher(services)
        admission = await dispatcher.admit(args.owner, manuscript.id, args.pipeline)
        logger.info("Report %s admitted for %s", admission.report_id, args.file.name)
        report = await dispatcher.wait(admission.report_id)
        _print_json(ReportResponse.from_report(report).model_dump(by_alias=True, mode="json"))
        return 0 if report.status != "failed" else 2
    finally:
        services.close()


async def _cmd_estimate(args: argparse.Namespace, settings: Any) -> int:
    from galley.config.pipelines import default_pipelines
    from galley.prompts.templates import default_library
    from galley.tracking.estimate import estimate_analysis_cost

    text = _read_manuscript(args.file)
    if text is None:
        return 1
    pipeline = default_pipelines().get(args.pipeline)
    if pipeline is None:
        logger.error("Unknown pipeline: %s", args.pipeline)
        return 1

    estimate = estimate_analysis_cost(
        len(text.split()), pipeline, default_library(), settings.llm_default_model,
    )
    _print_json(estimate.model_dump())
    return 0


async def _cmd_report(args: argparse.Namespace, settings: Any) -> int:
    from galley.api.models import ReportResponse
    from galley.core.errors import NotFoundError
    from galley.pipeline.context import build_context

    services = build_context(settings)
    try:
        report = services.reports.get(args.report_id)
    except NotFoundError as exc:
        logger.error("%s", exc)
        return 1
    finally:
        services.close()
    _print_json(ReportResponse.from_report(report).model_dump(by_alias=True, mode="json"))
    return 0


async def _cmd_usage(args: argparse.Namespace, settings: Any) -> int:
    from galley.core.models import billing_period
    from galley.pipeline.context import build_context

    services = build_context(settings)
    try:
        period = args.period or billing_period(services.clock.now())
        quota = services.quotas.quota(args.owner_id)
        by_agent = services.ledger.usage_by_agent(args.owner_id, period)
        by_model = services.ledger.usage_by_model(args.owner_id, period)
        spent = services.ledger.owner_period_total(args.owner_id, period)
        admitted = services.quotas.reports_admitted(args.owner_id, period)
    finally:
        services.close()

    print(f"\nUsage for {args.owner_id} ({quota.plan}) in {period}:")
    print(f"  Spend:     ${spent:.4f} of ${quota.max_monthly_cost:.2f}")
    print(f"  Reports:   {admitted} of {quota.max_reports_per_month}")
    if by_agent:
        print("  By agent:")
        for name, usage in sorted(by_agent.items()):
            print(f"    {name:<22} {usage.total_calls:>5} calls  ${usage.cost_usd:.4f}")
    if by_model:
        print("  By model:")
        for name, usage in sorted(by_model.items()):
            print(f"    {name:<34} {usage.total_calls:>5} calls  ${usage.cost_usd:.4f}")
    return 0


async def _cmd_prompts(args: argparse.Namespace, settings: Any) -> int:
    from galley.prompts.templates import default_library

    library = default_library()
    for kind, version in sorted(library.active_versions().items()):
        template = library.resolve(kind, version)
        print(f"{kind:<22} {version:<6} {template.fingerprint[:12]}  slots={','.join(template.slots)}")
    return 0


async def _cmd_sweep(args: argparse.Namespace, settings: Any) -> int:
    from galley.pipeline.context import build_context
    from galley.pipeline.supervisor import Supervisor

    services = build_context(settings)
    try:
        failed = await Supervisor(services).sweep()
    finally:
        services.close()
    print(f"Force-failed {len(failed)} report(s)")
    for report_id in failed:
        print(f"  {report_id}")
    return 0


def _cmd_serve(args: argparse.Namespace, settings: Any) -> int:
    import uvicorn

    from galley.api.app import create_app
    from galley.pipeline.context import build_context

    services = build_context(settings)
    try:
        uvicorn.run(create_app(services), host=args.host, port=args.port)
    finally:
        services.close()
    return 0


def _print_json(data: Any) -> None:
    json.dump(data, sys.stdout, indent=2, ensure_ascii=False, default=str)
    sys.stdout.write("\n")


if __name__ == "__main__":
    sys.exit(main())
