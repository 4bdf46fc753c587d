"""Checkout, static analysis and quality gate stages."""

from __future__ import annotations

from typing import TYPE_CHECKING

from shipwright.collaborators.git import GitClient
from shipwright.collaborators.sonar import (
    AnalysisSettings,
    AnalysisSubmission,
    QualityGateVerdict,
    SonarClient,
)
from shipwright.errors import QualityGateFailedError
from shipwright.models.outcome import Outcome
from shipwright.tasks.interface import Task

if TYPE_CHECKING:
    from shipwright.models.context import StageContext


class CheckoutTask(Task):
    """
    Check out a branch into the workspace.

    A ``branch`` run parameter overrides the configured branch. Publishes
    ``workspace``, ``branch`` and ``commit``.
    """

    def __init__(self, git: GitClient, url: str, branch: str = "main", workspace: str = "./workspace") -> None:
        self._git = git
        self._url = url
        self._branch = branch
        self._workspace = workspace

    def execute(self, ctx: StageContext) -> Outcome:
        branch = str(ctx.get("branch") or self._branch)
        workspace = str(ctx.get("workspace") or self._workspace)
        checkout = self._git.checkout(self._url, branch, workspace, ctx.token)
        ctx.log("Checked out %s at %s", branch, checkout.commit)
        ctx.publish(workspace=checkout.path, branch=checkout.branch, commit=checkout.commit)
        return Outcome.succeeded(
            f"{branch} at {checkout.short_commit}",
            result={"workspace": checkout.path, "branch": checkout.branch, "commit": checkout.commit},
        )


class AnalysisTask(Task):
    """Submit the workspace for static analysis and publish the submission as ``analysis``."""

    def __init__(self, sonar: SonarClient, settings: AnalysisSettings) -> None:
        self._sonar = sonar
        self._settings = settings

    def execute(self, ctx: StageContext) -> Outcome:
        workspace = str(ctx.get("workspace", "."))
        submission = self._sonar.submit(self._settings, workspace, ctx.token)
        ctx.log("Analysis submitted for %s (task %s)", submission.project_key, submission.task_id or "unknown")
        analysis = {
            "project_key": submission.project_key,
            "task_id": submission.task_id,
            "dashboard_url": submission.dashboard_url,
        }
        ctx.publish(analysis=analysis)
        return Outcome.succeeded(f"submitted {submission.project_key}", result=analysis)


class QualityGateTask(Task):
    """
    Check the quality gate once.

    PENDING yields a retryable failure, so composing this task with a fixed
    RetryPolicy turns it into a bounded polling loop. FAILED is fatal.
    """

    def __init__(self, sonar: SonarClient, project_key: str) -> None:
        self._sonar = sonar
        self._project_key = project_key

    def execute(self, ctx: StageContext) -> Outcome:
        analysis = ctx.get("analysis") or {}
        submission = AnalysisSubmission(
            project_key=analysis.get("project_key") or self._project_key,
            task_id=analysis.get("task_id"),
            dashboard_url=analysis.get("dashboard_url"),
        )
        verdict = self._sonar.quality_gate(submission)
        ctx.log("Quality gate: %s", verdict.value)

        result = {"verdict": verdict.value}
        if verdict == QualityGateVerdict.PASSED:
            ctx.publish(quality_gate=verdict.value)
            return Outcome.succeeded("quality gate passed", result=result)
        if verdict == QualityGateVerdict.FAILED:
            detail = f"quality gate failed for {submission.project_key}"
            if submission.dashboard_url:
                detail += f", see {submission.dashboard_url}"
            return Outcome.from_exception(QualityGateFailedError(detail))
        return Outcome.transient("quality gate pending", result=result)
