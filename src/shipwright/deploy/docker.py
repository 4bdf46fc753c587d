"""
Docker CLI container engine.

Every operation is one ``docker`` invocation through ``run_process``, so
cancelling the stage's token terminates the running docker command. Failed
commands raise ContainerEngineError (retryable); a missing docker binary
raises ConfigurationError.
"""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Callable, Mapping

from shipwright.deploy.engine import ContainerEngine, RunOptions
from shipwright.errors import ConfigurationError, ContainerEngineError, ContainerNotFoundError
from shipwright.process import ProcessResult, run_process
from shipwright.resilience.cancellation import CancellationToken

logger = logging.getLogger(__name__)

_NOT_FOUND_MARKERS = ("No such container", "No such object")


class DockerCliEngine(ContainerEngine):
    """
    ContainerEngine backed by the docker CLI.

    Args:
        binary: The docker executable
        timeout: Per-command timeout in seconds
        runner: run_process replacement (for testing)
    """

    def __init__(
        self,
        binary: str = "docker",
        timeout: float = 600,
        runner: Callable[..., ProcessResult] | None = None,
    ) -> None:
        self._binary = binary
        self._timeout = timeout
        self._runner = runner or run_process

    # ========== Images ==========

    def build(
        self,
        context_dir: str,
        tag: str,
        dockerfile: str = "Dockerfile",
        build_args: Mapping[str, str] | None = None,
        *,
        token: CancellationToken | None = None,
    ) -> str:
        args = ["build", "-t", tag, "-f", dockerfile]
        for key, value in (build_args or {}).items():
            args.extend(["--build-arg", f"{key}={value}"])
        args.append(context_dir)
        self._run(args, token=token)
        return tag

    def tag(self, source: str, target: str, *, token: CancellationToken | None = None) -> None:
        self._run(["tag", source, target], token=token)

    def push(self, reference: str, *, token: CancellationToken | None = None) -> None:
        self._run(["push", reference], token=token)

    def pull(self, reference: str, *, token: CancellationToken | None = None) -> None:
        self._run(["pull", reference], token=token)

    def login(self, registry: str, username: str, password: str, *, token: CancellationToken | None = None) -> None:
        # Password goes through stdin so it never shows up in a process listing
        self._run(["login", registry, "-u", username, "--password-stdin"], stdin=password, token=token)

    # ========== Containers ==========

    def run(self, reference: str, options: RunOptions, *, token: CancellationToken | None = None) -> str:
        result = self._run(self.build_run_args(reference, options), token=token)
        return result.stdout.strip()[:12]

    @staticmethod
    def build_run_args(reference: str, options: RunOptions) -> list[str]:
        """Arguments of ``docker run`` for a long-running service container."""
        args = ["run", "--name", options.name]
        if options.detach:
            args.append("-d")
        if options.restart:
            args.extend(["--restart", options.restart])
        for port in options.ports:
            args.extend(["-p", port])
        for key, value in options.env.items():
            args.extend(["-e", f"{key}={value}"])
        args.append(reference)
        return args

    def exists(self, name: str, *, token: CancellationToken | None = None) -> bool:
        return self._state(name, token) is not None

    def is_running(self, name: str, *, token: CancellationToken | None = None) -> bool:
        return self._state(name, token) is True

    def stop(self, name: str, *, token: CancellationToken | None = None) -> None:
        self._run(["stop", name], container=name, token=token)

    def remove(self, name: str, *, token: CancellationToken | None = None) -> None:
        self._run(["rm", name], container=name, token=token)

    def logs(self, name: str, tail: int = 100, *, token: CancellationToken | None = None) -> str:
        result = self._run(["logs", "--tail", str(tail), name], container=name, token=token)
        # docker logs replays the container's stderr on stderr
        return (result.stdout + result.stderr).strip()

    def _state(self, name: str, token: CancellationToken | None) -> bool | None:
        """True if running, False if stopped, None if absent."""
        try:
            result = self._run(["inspect", "-f", "{{.State.Running}}", name], container=name, token=token)
        except ContainerNotFoundError:
            return None
        return result.stdout.strip().lower() == "true"

    # ========== Process ==========

    def _run(
        self,
        args: list[str],
        *,
        stdin: str | None = None,
        container: str | None = None,
        token: CancellationToken | None = None,
    ) -> ProcessResult:
        cmd = [self._binary, *args]
        logger.debug("Running: %s", " ".join(cmd))
        try:
            result = self._runner(cmd, stdin=stdin, timeout=self._timeout, token=token)
        except FileNotFoundError as e:
            raise ConfigurationError(f"'{self._binary}' not found. Is Docker installed?", cause=e) from e
        except subprocess.TimeoutExpired as e:
            raise ContainerEngineError(
                f"docker {args[0]} timed out after {self._timeout:g}s",
                command=cmd,
                cause=e,
            ) from e

        if not result.ok:
            stderr = (result.stderr or "").strip()
            if container is not None and any(marker in stderr for marker in _NOT_FOUND_MARKERS):
                raise ContainerNotFoundError(container)
            raise ContainerEngineError(
                f"docker {args[0]} failed with exit code {result.returncode}: {stderr}",
                command=cmd,
                exit_code=result.returncode,
                stderr=stderr,
            )
        return result
