"""Source-control and static-analysis collaborators."""

from __future__ import annotations

from shipwright.collaborators.git import Checkout, GitClient
from shipwright.collaborators.sonar import (
    AnalysisSettings,
    AnalysisSubmission,
    QualityGateVerdict,
    SonarClient,
)

__all__ = [
    "AnalysisSettings",
    "AnalysisSubmission",
    "Checkout",
    "GitClient",
    "QualityGateVerdict",
    "SonarClient",
]
