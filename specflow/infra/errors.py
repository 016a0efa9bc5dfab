"""Custom exception hierarchy for specflow.

All application-specific exceptions inherit from SpecFlowError,
which carries a stable error code callers can branch on.
"""

from __future__ import annotations


class SpecFlowError(Exception):
    """Base exception for all specflow errors."""

    def __init__(self, message: str, *, code: str = "INTERNAL_ERROR") -> None:
        super().__init__(message)
        self.code = code


class SpecNotFoundError(SpecFlowError):
    """Spec id or prefix resolved to zero rows."""

    def __init__(self, spec_id: str) -> None:
        super().__init__(f"Spec not found: {spec_id}", code="NOT_FOUND")
        self.spec_id = spec_id


class AmbiguousSpecIdError(SpecFlowError):
    """Spec id prefix resolved to more than one row."""

    def __init__(self, prefix: str, candidates: list[str]) -> None:
        super().__init__(
            f"Spec id prefix '{prefix}' is ambiguous "
            f"({len(candidates)} matches: {', '.join(candidates)})",
            code="AMBIGUOUS",
        )
        self.prefix = prefix
        self.candidates = candidates


class InvalidPhaseError(SpecFlowError):
    """Target phase is not one of the fixed phase values."""

    def __init__(self, phase: str, valid: list[str]) -> None:
        super().__init__(
            f"Invalid phase '{phase}'. Must be one of: {', '.join(valid)}",
            code="INVALID_PHASE",
        )
        self.phase = phase


class SpecValidationError(SpecFlowError):
    """Malformed input: empty required field, bad id prefix, bad branch name."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message, code="VALIDATION_ERROR")
        self.field = field


class DuplicateSyncError(SpecFlowError):
    """A Sync Record already exists for the entity, whatever its status."""

    def __init__(
        self,
        entity_id: str,
        *,
        issue_number: int | None = None,
        sync_status: str | None = None,
    ) -> None:
        where = f"issue #{issue_number}" if issue_number is not None else "a remote issue"
        super().__init__(
            f"Spec {entity_id} is already linked to {where} "
            f"(sync status: {sync_status or 'unknown'}); reset the sync record before retrying",
            code="DUPLICATE",
        )
        self.entity_id = entity_id
        self.issue_number = issue_number
        self.sync_status = sync_status


class ExternalServiceError(SpecFlowError):
    """Remote tracking service call failed."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str = "EXTERNAL_SERVICE_ERROR",
    ) -> None:
        super().__init__(message, code=code)
        self.status_code = status_code


class VersionControlError(SpecFlowError):
    """A version-control command failed."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="VCS_ERROR")


class BranchError(SpecFlowError):
    """Branch creation or verification failed."""

    def __init__(
        self,
        message: str,
        *,
        expected: str | None = None,
        observed: str | None = None,
    ) -> None:
        super().__init__(message, code="BRANCH_ERROR")
        self.expected = expected
        self.observed = observed


class EventBusError(SpecFlowError):
    """Structural event bus failure (malformed event, ready barrier timeout)."""

    def __init__(self, message: str, *, code: str = "INVALID_EVENT") -> None:
        super().__init__(message, code=code)


class PhaseTransitionError(SpecFlowError):
    """A transition failed mid-way and its local changes were rolled back."""

    def __init__(
        self,
        message: str,
        *,
        spec_id: str,
        restored_phase: str | None,
        code: str = "ROLLED_BACK",
    ) -> None:
        super().__init__(message, code=code)
        self.spec_id = spec_id
        self.restored_phase = restored_phase


class RollbackFailedError(PhaseTransitionError):
    """A transition failed mid-way and restoring the previous phase failed too.

    The record may still hold the new phase. __cause__ is the rollback error;
    original_error is the failure that triggered the rollback.
    """

    def __init__(self, message: str, *, spec_id: str, original_error: BaseException) -> None:
        super().__init__(message, spec_id=spec_id, restored_phase=None, code="ROLLBACK_FAILED")
        self.original_error = original_error
