"""Branch lifecycle: one version-control branch per spec, named from its id."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

import structlog

from specflow.constants import SPEC_ID_MIN_PREFIX
from specflow.infra.errors import BranchError, SpecValidationError, VersionControlError
from specflow.storage.specs import validate_spec_id
from specflow.vcs.git import VersionControl

logger = structlog.get_logger()

DEFAULT_PROTECTED_BRANCHES: frozenset[str] = frozenset({"main", "develop"})

_DISALLOWED_RE = re.compile(r"[^a-z0-9_-]")
_HYPHEN_RUN_RE = re.compile(r"-+")
BRANCH_COMPONENT_MAX_LENGTH = 50


@dataclass(frozen=True)
class BranchCreationResult:
    created: bool
    branch_name: str | None
    original_branch: str | None
    reason: str | None = None

    @property
    def skipped(self) -> bool:
        return not self.created


def sanitize_branch_component(value: str) -> str:
    """Lower-case value and reduce it to [a-z0-9_-] with single hyphens, at most 50 chars."""
    sanitized = _DISALLOWED_RE.sub("-", value.lower())
    sanitized = _HYPHEN_RUN_RE.sub("-", sanitized)[:BRANCH_COMPONENT_MAX_LENGTH].strip("-")
    if not sanitized:
        raise SpecValidationError(
            f"Branch name '{value}' is empty after sanitization", field="branch_name"
        )
    return sanitized


def build_branch_name(spec_id: str, custom_name: str | None = None, *, protected: bool = False) -> str:
    """spec/<id8>[-<name>], or feature/spec-<id8>[-<name>] when starting from a protected branch."""
    short_id = spec_id[:SPEC_ID_MIN_PREFIX].lower()
    base = f"feature/spec-{short_id}" if protected else f"spec/{short_id}"
    if custom_name is None:
        return base
    return f"{base}-{sanitize_branch_component(custom_name)}"


class BranchLifecycleManager:
    """Creates and verifies the branch for a new spec."""

    def __init__(
        self,
        vcs: VersionControl,
        protected_branches: Iterable[str] = DEFAULT_PROTECTED_BRANCHES,
    ) -> None:
        self._vcs = vcs
        self._protected = frozenset(protected_branches)

    @property
    def protected_branches(self) -> frozenset[str]:
        return self._protected

    def create_spec_branch(self, spec_id: str, custom_name: str | None = None) -> BranchCreationResult:
        """Create and check out the spec branch.

        Returns a skipped result (created=False, reason set) outside a
        repository. Raises SpecValidationError for a bad id or name and
        BranchError when the created branch cannot be verified; in that case
        the original branch is checked out again first.
        """
        validate_spec_id(spec_id)
        if custom_name is not None:
            # fail on a bad name before touching the repository
            sanitize_branch_component(custom_name)

        if not self._vcs.is_inside_repository():
            logger.warning("branch_skipped_no_repository", spec_id=spec_id)
            return BranchCreationResult(
                created=False,
                branch_name=None,
                original_branch=None,
                reason="Not inside a version-control repository; branch not created",
            )

        try:
            original = self._vcs.current_branch()
        except VersionControlError as exc:
            raise BranchError(f"Could not determine the current branch: {exc}") from exc

        protected = original in self._protected
        branch_name = build_branch_name(spec_id, custom_name, protected=protected)

        try:
            self._vcs.create_branch(branch_name)
        except VersionControlError as exc:
            raise BranchError(
                f"Failed to create branch {branch_name}: {exc}", expected=branch_name, observed=original
            ) from exc

        observed = self._observe(branch_name)
        if observed != branch_name:
            self._restore(original, branch_name)
            raise BranchError(
                f"Branch verification failed. Expected: {branch_name}, observed: {observed}",
                expected=branch_name,
                observed=observed,
            )

        logger.info(
            "spec_branch_created",
            spec_id=spec_id,
            branch=branch_name,
            original_branch=original,
            protected_fallback=protected,
        )
        return BranchCreationResult(created=True, branch_name=branch_name, original_branch=original)

    def _observe(self, branch_name: str) -> str:
        """Current branch if branch_name exists, else a description of what was found."""
        try:
            if not self._vcs.verify_branch(branch_name):
                return "<missing>"
            return self._vcs.current_branch()
        except VersionControlError as exc:
            return f"<unavailable: {exc}>"

    def _restore(self, original: str, branch_name: str) -> None:
        try:
            self._vcs.checkout(original)
        except VersionControlError:
            logger.exception("branch_restore_failed", branch=original)
            return
        if self._vcs.verify_branch(branch_name):
            try:
                self._vcs.delete_branch(branch_name)
            except VersionControlError:
                logger.warning("branch_cleanup_failed", branch=branch_name)
