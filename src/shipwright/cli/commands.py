"""CLI command implementations for shipwright."""

from __future__ import annotations

import json
import os
import signal
import sys
import threading
from collections.abc import Mapping, Sequence
from dataclasses import replace
from types import FrameType
from typing import Any

import yaml

from shipwright.approval import ApprovalGate, ApprovalRequest
from shipwright.errors import ApprovalError, ConfigurationError, FieldValidationError, UnauthorizedError
from shipwright.logging import configure_logging
from shipwright.models.status import RunStatus
from shipwright.pipeline import Pipeline
from shipwright.resilience.config import get_engine_config
from shipwright.webapp import WebAppCollaborators, build_webapp_pipeline, load_pipeline_config

# Environment variables handed to stages untouched
PASS_THROUGH_ENV = ("BUILD_ID", "BUILD_URL", "REGISTRY_USERNAME", "REGISTRY_PASSWORD", "SONAR_TOKEN")

EXIT_SUCCEEDED = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2
EXIT_ABORTED = 130


def parse_assignments(items: Sequence[str] | None) -> dict[str, Any]:
    """
    Parse ``key=value`` arguments.

    Values are read as YAML scalars, so ``notify=false`` gives a bool and
    ``replicas=3`` an int.
    """
    values: dict[str, Any] = {}
    for item in items or ():
        key, sep, raw = item.partition("=")
        if not sep or not key:
            raise ConfigurationError(f"Expected key=value, got '{item}'")
        values[key.strip()] = yaml.safe_load(raw) if raw else ""
    return values


def validate_pipeline(path: str) -> int:
    """Validate a pipeline file and print its stages."""
    try:
        config = load_pipeline_config(path)
    except ConfigurationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_CONFIG

    engine_config = replace(get_engine_config(), container_engine="simulated")
    pipeline = build_webapp_pipeline(config, WebAppCollaborators.create(config, engine_config), engine_config)
    print(f"{path}: pipeline '{config.name}' is valid")
    for stage in pipeline.stages:
        phase = f" [{stage.hook.value}]" if stage.hook else ""
        print(f"  {stage.position + 1:>2}. {stage.name}{phase}")
    return EXIT_SUCCEEDED


def run_pipeline(
    path: str,
    *,
    params: Sequence[str] | None = None,
    approve_as: str | None = None,
    fields: Sequence[str] | None = None,
    simulate: bool = False,
    json_logs: bool = False,
    output: str = "text",
) -> int:
    """Run a pipeline file once and print the run summary."""
    configure_logging(json_format=True if json_logs else None)
    try:
        config = load_pipeline_config(path)
        run_input = parse_assignments(params)
        field_values = parse_assignments(fields)
        engine_config = get_engine_config()
        if simulate:
            engine_config = replace(engine_config, container_engine="simulated")
    except ConfigurationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_CONFIG

    env = {key: os.environ[key] for key in PASS_THROUGH_ENV if key in os.environ}
    collaborators = WebAppCollaborators.create(config, engine_config, analysis_token=env.get("SONAR_TOKEN"))
    pipeline = build_webapp_pipeline(config, collaborators, engine_config)

    approver = threading.Thread(
        target=_answer_approvals,
        args=(collaborators.gate, approve_as, field_values),
        name="shipwright-approver",
        daemon=True,
    )
    approver.start()

    previous = signal.signal(signal.SIGINT, _abort_handler(pipeline))
    try:
        run = pipeline.run(run_input, env)
    finally:
        signal.signal(signal.SIGINT, previous)
        pipeline.close()

    if output == "json":
        print(json.dumps(run.to_dict(), indent=2, default=str))
    else:
        print(run.summary())

    if run.status == RunStatus.SUCCEEDED:
        return EXIT_SUCCEEDED
    if run.status == RunStatus.ABORTED:
        return EXIT_ABORTED
    return EXIT_FAILED


def _abort_handler(pipeline: Pipeline) -> Any:
    def handler(signum: int, frame: FrameType | None) -> None:
        for run in pipeline.active_runs:
            pipeline.abort(run.id, "interrupted")

    return handler


def _answer_approvals(gate: ApprovalGate, approve_as: str | None, field_values: Mapping[str, Any]) -> None:
    """
    Resolve approval requests as they open.

    With ``approve_as`` every request is submitted once under that
    identity; otherwise the operator is asked on the terminal.
    """
    while True:
        request = gate.wait_for_pending()
        if request is None:
            continue
        if approve_as is not None:
            try:
                gate.submit(approve_as, field_values)
            except ApprovalError as e:
                print(f"Approval as '{approve_as}' rejected: {e.message}", file=sys.stderr)
            gate.wait_closed(request)
        elif sys.stdin.isatty():
            _prompt_operator(gate, request)
        else:
            print("Approval pending and no --approve-as given; waiting for the deadline", file=sys.stderr)
            gate.wait_closed(request)


def _prompt_operator(gate: ApprovalGate, request: ApprovalRequest) -> None:
    print(f"\n{request.prompt}")
    print(f"Allowed: {', '.join(sorted(request.allowed_responders))}")
    while gate.pending is request:
        identity = input("Approve as (empty to reject): ").strip()
        if gate.pending is not request:
            return
        try:
            if not identity:
                who = input("Rejecting as: ").strip()
                gate.reject(who, input("Reason: ").strip())
                return
            values: dict[str, Any] = {}
            for spec in request.fields:
                answer = input(f"{spec.name} [{spec.default}]: ").strip()
                if answer:
                    values[spec.name] = yaml.safe_load(answer)
            gate.submit(identity, values)
            return
        except (UnauthorizedError, FieldValidationError) as e:
            print(f"Not accepted: {e.message}")
        except ApprovalError as e:
            print(f"Approval closed: {e.message}")
            return
