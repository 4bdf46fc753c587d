"""
In-memory container engine.

Used when ``SHIPWRIGHT_CONTAINER_ENGINE=simulated`` and in tests. Every call
is recorded in ``calls`` so collaborator ordering can be asserted, and
failures can be injected per operation.
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass

from shipwright.deploy.engine import ContainerEngine, RunOptions
from shipwright.errors import ContainerEngineError, ContainerNotFoundError
from shipwright.resilience.cancellation import CancellationToken

logger = logging.getLogger(__name__)


@dataclass
class SimulatedContainer:
    name: str
    image: str
    id: str
    options: RunOptions
    running: bool = True


class SimulatedContainerEngine(ContainerEngine):
    """
    ContainerEngine that keeps images and containers in memory.

    Args:
        images: References available locally from the start
        remote: References available in the "registry"; None means every
            reference can be pulled
        failures: Operation name -> number of calls that fail with
            ContainerEngineError before the operation starts working

    Example:
        engine = SimulatedContainerEngine(failures={"push": 2})
        engine.push("app:1")  # raises ContainerEngineError
        engine.push("app:1")  # raises ContainerEngineError
        engine.push("app:1")  # works
    """

    def __init__(
        self,
        images: tuple[str, ...] | list[str] = (),
        remote: set[str] | None = None,
        failures: Mapping[str, int] | None = None,
    ) -> None:
        self.images: set[str] = set(images)
        self.remote = remote
        self.pushed: list[str] = []
        self.containers: dict[str, SimulatedContainer] = {}
        self.calls: list[tuple[str, ...]] = []
        self.logins: list[tuple[str, str]] = []
        self._failures = dict(failures or {})
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def _record(self, operation: str, *args: str, token: CancellationToken | None = None) -> None:
        if token is not None:
            token.raise_if_cancelled()
        with self._lock:
            self.calls.append((operation, *args))
            remaining = self._failures.get(operation, 0)
            if remaining > 0:
                self._failures[operation] = remaining - 1
                raise ContainerEngineError(f"simulated {operation} failure", command=[operation, *args])

    def operations(self) -> list[str]:
        """Names of the recorded calls, in order."""
        return [call[0] for call in self.calls]

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
        self._record("build", context_dir, tag, token=token)
        self.images.add(tag)
        return tag

    def tag(self, source: str, target: str, *, token: CancellationToken | None = None) -> None:
        self._record("tag", source, target, token=token)
        if source not in self.images:
            raise ContainerEngineError(f"No such image: {source}")
        self.images.add(target)

    def push(self, reference: str, *, token: CancellationToken | None = None) -> None:
        self._record("push", reference, token=token)
        if reference not in self.images:
            raise ContainerEngineError(f"An image does not exist locally with the tag: {reference}")
        self.pushed.append(reference)
        if self.remote is not None:
            self.remote.add(reference)

    def pull(self, reference: str, *, token: CancellationToken | None = None) -> None:
        self._record("pull", reference, token=token)
        if self.remote is not None and reference not in self.remote:
            raise ContainerEngineError(f"manifest for {reference} not found")
        self.images.add(reference)

    def login(self, registry: str, username: str, password: str, *, token: CancellationToken | None = None) -> None:
        self._record("login", registry, username, token=token)
        self.logins.append((registry, username))

    # ========== Containers ==========

    def run(self, reference: str, options: RunOptions, *, token: CancellationToken | None = None) -> str:
        self._record("run", reference, options.name, token=token)
        if reference not in self.images:
            raise ContainerEngineError(f"Unable to find image '{reference}' locally")
        if options.name in self.containers:
            raise ContainerEngineError(f'Conflict. The container name "/{options.name}" is already in use')
        container_id = f"{next(self._ids):012x}"
        self.containers[options.name] = SimulatedContainer(
            name=options.name,
            image=reference,
            id=container_id,
            options=options,
        )
        logger.debug("Simulated container %s started from %s", options.name, reference)
        return container_id

    def exists(self, name: str, *, token: CancellationToken | None = None) -> bool:
        self._record("exists", name, token=token)
        return name in self.containers

    def is_running(self, name: str, *, token: CancellationToken | None = None) -> bool:
        self._record("is_running", name, token=token)
        container = self.containers.get(name)
        return container is not None and container.running

    def stop(self, name: str, *, token: CancellationToken | None = None) -> None:
        self._record("stop", name, token=token)
        self._get(name).running = False

    def remove(self, name: str, *, token: CancellationToken | None = None) -> None:
        self._record("remove", name, token=token)
        container = self._get(name)
        if container.running:
            raise ContainerEngineError(f"You cannot remove a running container {container.id}")
        del self.containers[name]

    def logs(self, name: str, tail: int = 100, *, token: CancellationToken | None = None) -> str:
        self._record("logs", name, token=token)
        container = self._get(name)
        return f"simulated output of {container.name} ({container.image})"

    def _get(self, name: str) -> SimulatedContainer:
        container = self.containers.get(name)
        if container is None:
            raise ContainerNotFoundError(name)
        return container
