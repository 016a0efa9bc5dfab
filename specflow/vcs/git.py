"""Version-control primitives behind a small protocol.

GitCLI shells out to the git binary; tests substitute an in-memory fake.
All calls are blocking and are run off the event loop by callers.
"""

from __future__ import annotations

import subprocess
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

import structlog

from specflow.infra.errors import VersionControlError

logger = structlog.get_logger()


class VersionControl(Protocol):
    def is_inside_repository(self) -> bool: ...

    def current_branch(self) -> str: ...

    def create_branch(self, name: str) -> None:
        """Create name from HEAD and check it out."""
        ...

    def verify_branch(self, name: str) -> bool: ...

    def checkout(self, name: str) -> None: ...

    def delete_branch(self, name: str) -> None: ...


class GitCLI:
    """VersionControl backed by the git command line."""

    def __init__(self, cwd: Path) -> None:
        self._cwd = cwd

    def _run(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        command: Sequence[str] = ["git", *args]
        try:
            return subprocess.run(
                list(command),
                cwd=self._cwd,
                capture_output=True,
                check=check,
                text=True,
            )
        except FileNotFoundError as exc:
            raise VersionControlError(f"git binary not found in PATH: {exc}") from exc
        except subprocess.CalledProcessError as exc:
            stderr = exc.stderr.strip() or exc.stdout.strip()
            raise VersionControlError(f"git {' '.join(args)} failed: {stderr}") from exc

    def is_inside_repository(self) -> bool:
        try:
            result = self._run("rev-parse", "--is-inside-work-tree", check=False)
        except VersionControlError:
            return False
        return result.returncode == 0 and result.stdout.strip() == "true"

    def current_branch(self) -> str:
        return self._run("rev-parse", "--abbrev-ref", "HEAD").stdout.strip()

    def create_branch(self, name: str) -> None:
        self._run("checkout", "-b", name)
        logger.info("git_branch_created", branch=name)

    def verify_branch(self, name: str) -> bool:
        result = self._run("rev-parse", "--verify", "--quiet", f"refs/heads/{name}", check=False)
        return result.returncode == 0

    def checkout(self, name: str) -> None:
        self._run("checkout", name)

    def delete_branch(self, name: str) -> None:
        self._run("branch", "-D", name)
        logger.info("git_branch_deleted", branch=name)
