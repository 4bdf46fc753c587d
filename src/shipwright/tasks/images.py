"""Container image build and push stages."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING

from shipwright.deploy.engine import ContainerEngine
from shipwright.models.outcome import Outcome
from shipwright.tasks.interface import Task
from shipwright.tasks.shell import substitute

if TYPE_CHECKING:
    from shipwright.models.context import StageContext


def _template_values(ctx: StageContext) -> dict[str, object]:
    values = dict(ctx)
    values.setdefault("build_number", ctx.run_context.run.build_number)
    return values


class ImageBuildTask(Task):
    """
    Build an image from the checked-out workspace.

    Tags the image ``<repository>:<build_number>`` and publishes it as
    ``image``. Build arguments may use ``{key}`` placeholders.
    """

    def __init__(
        self,
        engine: ContainerEngine,
        repository: str,
        dockerfile: str = "Dockerfile",
        build_args: Mapping[str, str] | None = None,
    ) -> None:
        self._engine = engine
        self._repository = repository
        self._dockerfile = dockerfile
        self._build_args = dict(build_args or {})

    def execute(self, ctx: StageContext) -> Outcome:
        values = _template_values(ctx)
        tag = f"{self._repository}:{values['build_number']}"
        context_dir = str(ctx.get("workspace", "."))
        build_args = {key: substitute(value, values) for key, value in self._build_args.items()}

        ctx.log("Building %s from %s", tag, context_dir)
        image = self._engine.build(context_dir, tag, dockerfile=self._dockerfile, build_args=build_args, token=ctx.token)
        ctx.publish(image=image)
        return Outcome.succeeded(f"built {image}", result={"image": image})


class ImagePushTask(Task):
    """
    Push the built image under one or more tags.

    Logs in first when the run environment carries ``REGISTRY_USERNAME`` and
    ``REGISTRY_PASSWORD``. The first pushed reference is published as
    ``image``, replacing the local one, so deploy stages pull what was
    pushed.
    """

    def __init__(
        self,
        engine: ContainerEngine,
        registry: str | None = None,
        tags: Iterable[str] = ("{build_number}", "latest"),
    ) -> None:
        self._engine = engine
        self._registry = registry.rstrip("/") if registry else None
        self._tags = tuple(tags)

    def execute(self, ctx: StageContext) -> Outcome:
        env = ctx.run_context.env
        username = env.get("REGISTRY_USERNAME")
        password = env.get("REGISTRY_PASSWORD")
        if username and password:
            ctx.log("Logging in to %s as %s", self._registry or "default registry", username)
            self._engine.login(self._registry or "", username, password, token=ctx.token)

        image = str(ctx["image"])
        if self._registry and not image.startswith(f"{self._registry}/"):
            remote = f"{self._registry}/{image}"
            self._engine.tag(image, remote, token=ctx.token)
            image = remote

        values = _template_values(ctx)
        pushed = []
        for tag in self._tags:
            reference = self._engine.push_tag(image, substitute(tag, values), token=ctx.token)
            ctx.log("Pushed %s", reference)
            pushed.append(reference)

        ctx.publish(image=pushed[0] if pushed else image, pushed_images=pushed)
        return Outcome.succeeded(f"pushed {', '.join(pushed)}", result={"pushed": pushed})
