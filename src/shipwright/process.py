"""
Cancellable subprocess execution.

Shell steps and the git/scanner collaborators run external commands through
``run_process``. Cancelling the token terminates the child process, so a
timed-out or aborted stage does not leave the command running.
"""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from shipwright.errors import RunAbortedError
from shipwright.resilience.cancellation import CancellationToken

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessResult:
    args: str | Sequence[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def run_process(
    args: str | Sequence[str],
    *,
    shell: bool = False,
    cwd: str | None = None,
    env: Mapping[str, str] | None = None,
    stdin: str | None = None,
    timeout: float | None = None,
    token: CancellationToken | None = None,
) -> ProcessResult:
    """
    Run a command to completion and capture its output.

    Raises:
        RunAbortedError: The token was cancelled while the command ran
        subprocess.TimeoutExpired: ``timeout`` passed; the process is killed
        FileNotFoundError: The executable does not exist
    """
    if token is not None:
        token.raise_if_cancelled()

    process = subprocess.Popen(
        args,
        shell=shell,
        cwd=cwd,
        env=dict(env) if env is not None else None,
        stdin=subprocess.PIPE if stdin is not None else subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    )
    unregister = token.add_callback(process.terminate) if token is not None else None
    try:
        stdout, stderr = process.communicate(input=stdin, timeout=timeout)
    except subprocess.TimeoutExpired:
        process.kill()
        process.communicate()
        raise
    finally:
        if unregister is not None:
            unregister()

    if token is not None and token.is_cancelled:
        logger.info("Process terminated by cancellation: %s", args if isinstance(args, str) else " ".join(args))
        raise RunAbortedError("Command cancelled", reason=token.reason)
    return ProcessResult(args=args, returncode=process.returncode, stdout=stdout, stderr=stderr)
