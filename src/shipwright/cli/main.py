"""Main CLI entry point for shipwright."""

from __future__ import annotations

import argparse
import sys

from shipwright.cli.commands import run_pipeline, validate_pipeline


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="shipwright",
        description="shipwright - delivery pipeline engine",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # run command
    run_parser = subparsers.add_parser("run", help="Run a pipeline file once")
    run_parser.add_argument("pipeline", help="Path to the pipeline YAML file")
    run_parser.add_argument(
        "-p",
        "--param",
        action="append",
        metavar="KEY=VALUE",
        help="Run parameter, e.g. branch=release (repeatable)",
    )
    run_parser.add_argument(
        "--approve-as",
        metavar="IDENTITY",
        help="Answer approval requests as this identity instead of prompting",
    )
    run_parser.add_argument(
        "-f",
        "--field",
        action="append",
        metavar="KEY=VALUE",
        help="Approval form value used with --approve-as (repeatable)",
    )
    run_parser.add_argument(
        "--simulate",
        action="store_true",
        help="Use the in-memory container engine and health probe",
    )
    run_parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit JSON logs instead of console logs",
    )
    run_parser.add_argument(
        "--output",
        choices=["text", "json"],
        default="text",
        help="Run summary format (default: text)",
    )

    # validate command
    validate_parser = subparsers.add_parser("validate", help="Validate a pipeline file")
    validate_parser.add_argument("pipeline", help="Path to the pipeline YAML file")

    args = parser.parse_args(argv)

    if args.command == "run":
        sys.exit(
            run_pipeline(
                args.pipeline,
                params=args.param,
                approve_as=args.approve_as,
                fields=args.field,
                simulate=args.simulate,
                json_logs=args.json_logs,
                output=args.output,
            )
        )
    elif args.command == "validate":
        sys.exit(validate_pipeline(args.pipeline))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
