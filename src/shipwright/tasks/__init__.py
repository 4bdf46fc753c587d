"""Stage actions."""

from shipwright.tasks.approval import ApprovalTask
from shipwright.tasks.deploy import DeployTask
from shipwright.tasks.images import ImageBuildTask, ImagePushTask
from shipwright.tasks.interface import CallableTask, NoOpTask, RetryingTask, Task
from shipwright.tasks.shell import ShellTask
from shipwright.tasks.source import AnalysisTask, CheckoutTask, QualityGateTask

__all__ = [
    "AnalysisTask",
    "ApprovalTask",
    "CallableTask",
    "CheckoutTask",
    "DeployTask",
    "ImageBuildTask",
    "ImagePushTask",
    "NoOpTask",
    "QualityGateTask",
    "RetryingTask",
    "ShellTask",
    "Task",
]
