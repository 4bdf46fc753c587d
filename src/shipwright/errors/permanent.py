"""Permanent (non-retryable) errors."""

from __future__ import annotations

from shipwright.errors.base import ShipwrightError


class PermanentError(ShipwrightError):
    """Non-retryable errors.

    Conditions another attempt will not fix:
    - Authentication or authorization failures
    - Invalid input
    - An explicit failing verdict from a collaborator

    A permanent failure short-circuits any retry sequence.
    """

    code: int = 102


class ConfigurationError(ShipwrightError):
    """Invalid configuration.

    Raised while loading engine settings or a pipeline file.
    """

    code: int = 104
