"""audit-log — emit audit events through the logging pipeline from the shell."""

import json
import logging
import sys
from argparse import ArgumentParser
from dataclasses import asdict

from auditlog.config import load_config
from auditlog.delivery_queue import DeliveryQueue
from auditlog.errors import ConfigurationError
from auditlog.pipeline import LoggingPipeline


def build_parser() -> ArgumentParser:
    """Build the CLI argument parser."""
    parser = ArgumentParser(
        prog="audit-log",
        description="Emit structured audit events to file, event log, and SIEM sinks.",
    )
    parser.add_argument(
        "--config",
        help="YAML file with configuration overrides (env vars take precedence)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    emit = sub.add_parser("emit", help="Emit one entry through the full pipeline")
    emit.add_argument("message")
    emit.add_argument("--level", default="Information",
                      help="Debug, Information, Warning, Error, or Critical")
    emit.add_argument("--correlation-id")
    emit.add_argument("--data", action="append", default=[], metavar="KEY=VALUE",
                      help="Additional data field (repeatable)")

    event = sub.add_parser("event", help="Write directly to the OS event facility")
    event.add_argument("message")
    event.add_argument("--event-id", type=int, required=True)
    event.add_argument("--severity", default="Information",
                       help="Information, Warning, or Error")
    event.add_argument("--source")
    event.add_argument("--log-name")

    sub.add_parser("config", help="Print the resolved configuration as JSON")
    sub.add_parser("queue", help="List pending durable SIEM queue items")
    return parser


def parse_data(pairs: list[str]) -> dict:
    data = {}
    for pair in pairs:
        if "=" not in pair:
            raise ValueError(f"--data expects KEY=VALUE, got {pair!r}")
        key, value = pair.split("=", 1)
        data[key.strip()] = value
    return data


def run(args) -> int:
    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    if args.command == "config":
        print(json.dumps({
            **asdict(config),
            "log_level": config.log_level.label,
            "siem_token": "***" if config.siem_token else None,
        }, indent=2, default=str))
        return 0

    if args.command == "queue":
        for item in DeliveryQueue(config.resolved_queue_dir).pending():
            print(f"{item.path}  attempts={item.attempts}  enqueued={item.enqueued_utc}  "
                  f"message={item.entry.get('message', '')!r}")
        return 0

    pipeline = LoggingPipeline(config)
    if args.command == "emit":
        try:
            data = parse_data(args.data)
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 2
        pipeline.emit(
            args.message,
            args.level,
            correlation_id=args.correlation_id,
            additional_data=data or None,
        )
    elif args.command == "event":
        pipeline.write_direct_event(
            args.message, args.event_id, args.severity,
            source=args.source, log_name=args.log_name,
        )

    degraded = pipeline.diagnostics.count()
    if degraded:
        logging.getLogger(__name__).warning("%d degraded-path event(s) recorded", degraded)
    return 0


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
        stream=sys.stderr,
    )
    args = build_parser().parse_args(argv)
    return run(args)


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        sys.exit(0)
