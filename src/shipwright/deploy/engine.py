"""
Container engine collaborator interface.

The deployment driver and the image tasks talk to the container host only
through ContainerEngine. DockerCliEngine drives the docker CLI;
SimulatedContainerEngine keeps everything in memory and is selected by
configuration for dry runs and tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from shipwright.resilience.cancellation import CancellationToken


@dataclass(frozen=True)
class RunOptions:
    """
    Options for starting a long-running container.

    Attributes:
        name: Container name; at most one container holds it on a host
        ports: Port mappings as "host:container"
        env: Environment variables
        restart: Restart policy
        detach: Run in the background
    """

    name: str
    ports: tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=dict)
    restart: str = "unless-stopped"
    detach: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "ports", tuple(self.ports))
        object.__setattr__(self, "env", MappingProxyType({k: str(v) for k, v in self.env.items()}))


def split_reference(reference: str) -> tuple[str, str]:
    """
    Split an image reference into repository and tag.

    A colon inside the registry host (``host:5000/app``) is not a tag.
    """
    slash = reference.rfind("/")
    colon = reference.rfind(":")
    if colon > slash:
        return reference[:colon], reference[colon + 1 :]
    return reference, "latest"


class ContainerEngine(ABC):
    """
    Operations the pipeline needs from a container engine.

    Implementations raise ContainerEngineError for failed commands (retryable)
    and ContainerNotFoundError when a named container does not exist. Every
    operation takes the calling stage's cancellation token; cancelling it
    stops the operation and raises RunAbortedError.
    """

    @abstractmethod
    def build(
        self,
        context_dir: str,
        tag: str,
        dockerfile: str = "Dockerfile",
        build_args: Mapping[str, str] | None = None,
        *,
        token: CancellationToken | None = None,
    ) -> str:
        """Build an image and return its reference."""

    @abstractmethod
    def tag(self, source: str, target: str, *, token: CancellationToken | None = None) -> None:
        """Add ``target`` as a reference to the image ``source``."""

    @abstractmethod
    def push(self, reference: str, *, token: CancellationToken | None = None) -> None:
        """Push a reference to its registry."""

    @abstractmethod
    def pull(self, reference: str, *, token: CancellationToken | None = None) -> None:
        """Pull a reference from its registry."""

    @abstractmethod
    def login(self, registry: str, username: str, password: str, *, token: CancellationToken | None = None) -> None:
        """Authenticate against a registry."""

    @abstractmethod
    def run(self, reference: str, options: RunOptions, *, token: CancellationToken | None = None) -> str:
        """Start a container and return its id."""

    @abstractmethod
    def exists(self, name: str, *, token: CancellationToken | None = None) -> bool:
        """True if a container with this name exists, running or not."""

    @abstractmethod
    def is_running(self, name: str, *, token: CancellationToken | None = None) -> bool:
        """True if a container with this name is running."""

    @abstractmethod
    def stop(self, name: str, *, token: CancellationToken | None = None) -> None:
        """Stop a container."""

    @abstractmethod
    def remove(self, name: str, *, token: CancellationToken | None = None) -> None:
        """Remove a stopped container."""

    @abstractmethod
    def logs(self, name: str, tail: int = 100, *, token: CancellationToken | None = None) -> str:
        """Last ``tail`` lines of a container's output."""

    def push_tag(self, image: str, tag: str, *, token: CancellationToken | None = None) -> str:
        """Tag ``image`` as ``<repository>:<tag>``, push it and return the reference."""
        repository, _ = split_reference(image)
        reference = f"{repository}:{tag}"
        if reference != image:
            self.tag(image, reference, token=token)
        self.push(reference, token=token)
        return reference
