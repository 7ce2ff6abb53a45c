"""Command-line entrypoint for the signals pipeline."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys

from pydantic import ValidationError

from market_signals.config import Settings, clear_settings_cache, get_settings
from market_signals.pipeline import PipelineResult, SignalsPipeline

logger = logging.getLogger("market_signals")

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_STAGE_ERRORS = 2


async def _run_pipeline(
    settings: Settings, org_ids: tuple[str, ...], *, init_schema: bool
) -> list[PipelineResult]:
    pipeline = SignalsPipeline(settings)
    try:
        if init_schema:
            await pipeline.db_manager.init_schema_async()
        return [await pipeline.run(org_id) for org_id in org_ids]
    finally:
        await pipeline.close()


def _load_settings(log_level: str | None) -> Settings:
    if log_level:
        os.environ["LOG_LEVEL"] = log_level.upper()
        clear_settings_cache()
    return get_settings()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Market signals pipeline runner")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run the full signals pipeline per org")
    run_parser.add_argument(
        "--org",
        action="append",
        dest="orgs",
        help="Org id to process (repeatable; defaults to ORG_IDS)",
    )
    run_parser.add_argument(
        "--log-level",
        help="Override LOG_LEVEL for this invocation (e.g. DEBUG, INFO)",
    )
    run_parser.add_argument(
        "--init-schema",
        action="store_true",
        help="Create missing tables before running (development databases)",
    )

    subparsers.add_parser("show-config", help="Print the effective settings with secrets redacted")

    args = parser.parse_args(argv)

    try:
        settings = _load_settings(getattr(args, "log_level", None))
    except ValidationError as e:
        print(f"Configuration error:\n{e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "show-config":
        print(json.dumps(settings.redacted_summary(), indent=2))
        return EXIT_OK

    if args.command == "run":
        org_ids = tuple(org.strip() for org in args.orgs) if args.orgs else settings.org_ids
        try:
            settings.validate_requirements(org_ids=org_ids)
        except ValueError as e:
            print(f"Configuration error: {e}", file=sys.stderr)
            return EXIT_CONFIG_ERROR

        results = asyncio.run(_run_pipeline(settings, org_ids, init_schema=args.init_schema))
        print(json.dumps([r.to_dict() for r in results], indent=2))
        if any(r.errors for r in results):
            logger.warning("Pipeline finished with stage errors")
            return EXIT_STAGE_ERRORS
        return EXIT_OK

    parser.error("Unknown command")
    return EXIT_CONFIG_ERROR


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
