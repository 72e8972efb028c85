"""Error taxonomy for the quota engine.

Every error that can reach an HTTP caller derives from ``QuotaError`` and
carries the status code and ``details`` payload it is rendered with.
"""

from typing import Any


class QuotaError(Exception):
    status_code = 500

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(QuotaError):
    status_code = 400


class AuthorizationError(QuotaError):
    status_code = 403


class NotFoundError(QuotaError):
    status_code = 404


class ConflictError(QuotaError):
    status_code = 409


class ClusterApplyError(QuotaError):
    """The ResourceQuota write failed; the plan change was rolled back."""

    status_code = 500


class CompensationError(QuotaError):
    """The rollback write failed after a cluster apply failure.

    The database and the cluster may now disagree and need manual
    reconciliation.
    """

    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        org_id: str,
        attempted_plan: str,
        previous_plan: str,
        apply_error: str,
        rollback_error: str,
    ) -> None:
        super().__init__(
            message,
            details={
                "organizationId": org_id,
                "attemptedPlan": attempted_plan,
                "previousPlan": previous_plan,
                "applyError": apply_error,
                "rollbackError": rollback_error,
            },
        )
        self.org_id = org_id
        self.attempted_plan = attempted_plan
        self.previous_plan = previous_plan


class MalformedQuantityError(ValueError):
    """A quantity string has no numeric magnitude."""

    def __init__(self, raw: str) -> None:
        super().__init__(f"malformed quantity {raw!r}")
        self.raw = raw


class PersistenceError(QuotaError):
    """The plan could not be written to the database; nothing was applied."""

    status_code = 500
