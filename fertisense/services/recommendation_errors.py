"""
Error taxonomy for the recommendation engine.

InputError and SessionInvalidError are raised by the reading aggregator,
ConfigurationError by the grade registry and rule-set loader,
InfeasibleBlendError by the blend solver, CatalogUnavailable and SyncFailure
at the network adapters, NotFoundError by the session store.
"""


class RecommendationError(Exception):
    """Base class for all engine errors."""


class InputError(RecommendationError):
    """Sensor values that cannot be used for averaging."""


class SessionInvalidError(InputError):
    """No usable N, P or K value in the reading session."""


class ConfigurationError(RecommendationError):
    """Rule set or candidate definition references unknown data."""


class InfeasibleBlendError(RecommendationError):
    """Solved bag count is negative, non-finite or above the candidate ceiling."""

    def __init__(self, candidate_id: str, reason: str):
        self.candidate_id = candidate_id
        self.reason = reason
        super().__init__(f"{candidate_id}: {reason}")


class CatalogUnavailable(RecommendationError):
    """Price catalog could not be fetched (offline, timeout, bad payload)."""


class SyncFailure(RecommendationError):
    """Remote session log write failed."""


class NotFoundError(RecommendationError):
    """Unknown session identity or plan id."""
