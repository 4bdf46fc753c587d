"""
Built-in ShellTask for executing shell commands.

This module provides a ready-to-use ShellTask that:
- Executes shell commands via subprocess
- Substitutes {key} placeholders with context values (including values
  published by earlier stages and run parameters)
- Terminates the command when the stage is cancelled
- Captures output lines in the stage log, with secrets masked
"""

from __future__ import annotations

import os
import re
import subprocess
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from shipwright.config_validation import SHELL_TASK_SCHEMA, validate
from shipwright.models.outcome import Outcome
from shipwright.models.status import FailureKind
from shipwright.process import run_process
from shipwright.tasks.interface import Task

if TYPE_CHECKING:
    from shipwright.models.context import StageContext

_PLACEHOLDER = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")
_SHELL_KEYS = tuple(SHELL_TASK_SCHEMA["properties"])  # type: ignore[arg-type]
MASK = "********"


def substitute(template: str, values: Mapping[str, Any]) -> str:
    """
    Replace ``{key}`` placeholders with values.

    Unknown keys and None values are left as they are, so shell syntax like
    ``${HOME}`` or ``{a,b}`` survives.
    """

    def replace(match: re.Match[str]) -> str:
        key = match.group(1)
        value = values.get(key)
        return match.group(0) if value is None else str(value)

    return _PLACEHOLDER.sub(replace, template)


def mask_secrets(text: str, secrets: list[str]) -> str:
    for secret in secrets:
        if secret:
            text = text.replace(secret, MASK)
    return text


class ShellTask(Task):
    """
    Execute shell commands with placeholder substitution.

    The command comes from the constructor or, if not given there, from
    ``ctx["command"]``.

    Context Parameters:
        command: The shell command to execute
        cwd: Working directory (default: ``{workspace}`` if published)
        env: Extra environment variables
        expected_codes: Exit codes counted as success (default: [0])
        secrets: Strings masked in captured output

    Result:
        stdout, stderr, returncode

    Example:
        # "checkout" published {"workspace": "/builds/app"}
        ShellTask("make test -C {workspace}")
    """

    def __init__(self, command: str | None = None, name: str | None = None) -> None:
        self._command = command
        self._name = name

    @property
    def name(self) -> str:
        return self._name or type(self).__name__

    def execute(self, ctx: StageContext) -> Outcome:
        params = {key: ctx[key] for key in _SHELL_KEYS if key in ctx}
        if self._command is not None:
            params["command"] = self._command
        errors = validate(params, SHELL_TASK_SCHEMA)
        if errors:
            return Outcome.failed(FailureKind.VALIDATION, f"Invalid shell parameters: {errors[0]}")

        command = substitute(params["command"], ctx)
        secrets = [str(s) for s in params.get("secrets", [])]
        expected = params.get("expected_codes", [0])
        cwd = params.get("cwd") or ctx.get("workspace")
        env = None
        if params.get("env"):
            env = {**os.environ, **params["env"]}

        ctx.log("$ %s", mask_secrets(command, secrets))
        try:
            result = run_process(command, shell=True, cwd=cwd, env=env, token=ctx.token)
        except subprocess.TimeoutExpired:
            return Outcome.failed(FailureKind.TIMEOUT, "Command timed out")

        stdout = mask_secrets(result.stdout.strip(), secrets)
        stderr = mask_secrets(result.stderr.strip(), secrets)
        for line in stdout.splitlines():
            ctx.log(line)
        for line in stderr.splitlines():
            ctx.log("stderr: %s", line)

        outputs = {"stdout": stdout, "stderr": stderr, "returncode": result.returncode}
        if result.returncode not in expected:
            return Outcome.failed(
                FailureKind.ERROR,
                f"Command failed with exit code {result.returncode}: {stderr}",
                result=outputs,
            )
        return Outcome.succeeded(f"exit code {result.returncode}", result=outputs)
