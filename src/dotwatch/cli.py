"""Command line entry point.

Usage:
    dotwatch serve [--host HOST] [--port PORT] [--log-level LEVEL]
    dotwatch rules
    dotwatch scrape-config [--target HOST:PORT]
    dotwatch check FILE    (use "-" for stdin)
"""

import argparse
import json
import sys
from collections.abc import Sequence
from dataclasses import replace

from dotwatch.config import Settings
from dotwatch.core.alerts import rule_groups_document, scrape_config_document
from dotwatch.core.encoding.prometheus import parse_exposition
from dotwatch.core.errors import ConfigurationError
from dotwatch.core.logs import configure_logging, get_logger

logger = get_logger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dotwatch",
        description="Instrumented demo service for metrics and alerting.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Run the HTTP service")
    serve.add_argument("--host", help="Interface to bind (DOTWATCH_HOST)")
    serve.add_argument("--port", type=int, help="Port to bind (DOTWATCH_PORT)")
    serve.add_argument("--log-level", help="Log level (DOTWATCH_LOG_LEVEL)")

    commands.add_parser("rules", help="Print alert rules as a rule-file document")

    scrape = commands.add_parser("scrape-config", help="Print the collector scrape job")
    scrape.add_argument(
        "--target", action="append", help="host:port to scrape (repeatable)"
    )

    check = commands.add_parser("check", help="Validate exposition text")
    check.add_argument("file", help='File to validate, or "-" for stdin')
    return parser


def _serve(settings: Settings, args: argparse.Namespace) -> int:
    import uvicorn

    from dotwatch.app import create_app
    from dotwatch.core.registry import default_registry

    overrides = {
        key: value
        for key, value in (
            ("host", args.host),
            ("port", args.port),
            ("log_level", args.log_level),
        )
        if value is not None
    }
    settings = replace(settings, **overrides)
    configure_logging(settings.log_level)
    app = create_app(settings, default_registry())
    logger.with_fields(host=settings.host, port=settings.port).info("Starting DotWatch")
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
    return 0


def _check(path: str) -> int:
    if path == "-":
        text = sys.stdin.read()
    else:
        with open(path, encoding="utf-8") as handle:
            text = handle.read()
    try:
        series = parse_exposition(text)
    except ValueError as exc:
        print(f"invalid exposition: {exc}", file=sys.stderr)
        return 1
    print(f"ok: {len(series)} series")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Run the dotwatch command line and return the exit code."""
    args = _build_parser().parse_args(argv)
    try:
        settings = Settings.from_env()
    except ConfigurationError as exc:
        print(f"configuration error: {exc}", file=sys.stderr)
        return 2

    if args.command == "serve":
        try:
            return _serve(settings, args)
        except ConfigurationError as exc:
            print(f"configuration error: {exc}", file=sys.stderr)
            return 2
    if args.command == "rules":
        print(json.dumps(rule_groups_document(), indent=2))
        return 0
    if args.command == "scrape-config":
        targets = args.target or [f"{settings.host}:{settings.port}"]
        document = scrape_config_document(
            targets, settings.metrics_path, settings.scrape_interval_seconds
        )
        print(json.dumps(document, indent=2))
        return 0
    return _check(args.file)


if __name__ == "__main__":
    sys.exit(main())
