"""
Source-control collaborator.

Produces a working tree at the head of a branch using the git CLI. An
existing clone is fetched and hard-reset instead of cloned again.
"""

from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from shipwright.errors import CheckoutFailedError
from shipwright.process import ProcessResult, run_process
from shipwright.resilience.cancellation import CancellationToken

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Checkout:
    """A working tree at a known commit."""

    path: str
    branch: str
    commit: str

    @property
    def short_commit(self) -> str:
        return self.commit[:7]


class GitClient:
    """
    git CLI wrapper.

    Args:
        binary: The git executable
        timeout: Per-command timeout in seconds
        runner: run_process replacement (for testing)
    """

    def __init__(
        self,
        binary: str = "git",
        timeout: float = 600,
        runner: Callable[..., ProcessResult] = run_process,
    ) -> None:
        self._binary = binary
        self._timeout = timeout
        self._runner = runner

    def checkout(
        self,
        url: str,
        branch: str,
        path: str,
        token: CancellationToken | None = None,
    ) -> Checkout:
        """
        Make ``path`` a working tree of ``url`` at the head of ``branch``.

        Raises:
            CheckoutFailedError: Any git command failed
        """
        if os.path.isdir(os.path.join(path, ".git")):
            logger.info("Updating %s to origin/%s", path, branch)
            self._git(["fetch", "--prune", "origin", branch], cwd=path, token=token)
            self._git(["checkout", "-B", branch, f"origin/{branch}"], cwd=path, token=token)
            self._git(["reset", "--hard", f"origin/{branch}"], cwd=path, token=token)
        else:
            logger.info("Cloning %s (%s) into %s", url, branch, path)
            parent = os.path.dirname(os.path.abspath(path))
            os.makedirs(parent, exist_ok=True)
            self._git(["clone", "--branch", branch, "--single-branch", url, path], cwd=parent, token=token)

        commit = self.head(path, token)
        return Checkout(path=path, branch=branch, commit=commit)

    def head(self, path: str, token: CancellationToken | None = None) -> str:
        return self._git(["rev-parse", "HEAD"], cwd=path, token=token).stdout.strip()

    def _git(self, args: list[str], *, cwd: str, token: CancellationToken | None) -> ProcessResult:
        cmd = [self._binary, *args]
        kwargs: dict[str, Any] = {"cwd": cwd, "timeout": self._timeout, "token": token}
        try:
            result = self._runner(cmd, **kwargs)
        except FileNotFoundError as e:
            raise CheckoutFailedError(f"'{self._binary}' not found", cause=e) from e
        except subprocess.TimeoutExpired as e:
            raise CheckoutFailedError(f"git {args[0]} timed out after {self._timeout:g}s", cause=e) from e
        if not result.ok:
            raise CheckoutFailedError(f"git {args[0]} failed with exit code {result.returncode}: {result.stderr.strip()}")
        return result
