"""Spec document files: one markdown file per spec under the workspace.

The document is a secondary representation of the record store. It carries
header markers (**Phase:**, **Updated:**) that are rewritten in place on
every phase transition.
"""

from __future__ import annotations

import re
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from specflow.infra.fsync import fsync_directory, fsync_file_and_directory

if TYPE_CHECKING:
    from specflow.storage.specs import Spec

logger = structlog.get_logger()

DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"

_PHASE_MARKER_RE = re.compile(r"^\*\*Phase:\*\* .+$", re.MULTILINE)
_UPDATED_MARKER_RE = re.compile(r"^\*\*Updated:\*\* .+$", re.MULTILINE)


def format_timestamp(value: datetime) -> str:
    return value.strftime(DATETIME_FORMAT)


def render_spec_document(spec: Spec) -> str:
    """Initial document for a freshly created spec."""
    return (
        f"# {spec.name}\n"
        "\n"
        f"**Spec ID:** {spec.id}\n"
        f"**Phase:** {spec.phase.value}\n"
        f"**Branch:** {spec.branch_name or '-'}\n"
        f"**Created:** {format_timestamp(spec.created_at)}\n"
        f"**Updated:** {format_timestamp(spec.updated_at)}\n"
        "\n"
        "---\n"
        "\n"
        "## 1. Background and goals\n"
        "\n"
        f"{spec.description or '(describe the background and goals)'}\n"
        "\n"
        "## 2. Acceptance criteria\n"
        "\n"
        "- [ ] (criterion)\n"
    )


def update_phase_markers(content: str, phase: str, updated_at: datetime) -> str:
    """Rewrite the **Phase:** and **Updated:** header lines."""
    content = _PHASE_MARKER_RE.sub(f"**Phase:** {phase}", content, count=1)
    return _UPDATED_MARKER_RE.sub(
        f"**Updated:** {format_timestamp(updated_at)}", content, count=1
    )


def read_phase_marker(content: str) -> str | None:
    match = _PHASE_MARKER_RE.search(content)
    if match is None:
        return None
    return match.group(0).removeprefix("**Phase:** ").strip()


class SpecDocumentStore:
    """File-backed document store rooted at the workspace specs directory."""

    def __init__(self, specs_dir: Path) -> None:
        self._specs_dir = specs_dir

    @property
    def specs_dir(self) -> Path:
        return self._specs_dir

    def path_for(self, spec_id: str) -> Path:
        return self._specs_dir / f"{spec_id}.md"

    def exists(self, path: Path) -> bool:
        return path.is_file()

    def read(self, path: Path) -> str:
        return path.read_text(encoding="utf-8")

    def write(self, path: Path, text: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as f:
            f.write(text)
            f.flush()

    def durable_flush(self, path: Path) -> None:
        """Flush file contents and the directory entry to storage."""
        fsync_file_and_directory(path)

    def write_durable(self, path: Path, text: str) -> None:
        self.write(path, text)
        self.durable_flush(path)
        logger.debug("spec_document_written", path=str(path), chars=len(text))

    def remove(self, path: Path) -> bool:
        if not path.is_file():
            return False
        path.unlink()
        fsync_directory(path.parent)
        return True
