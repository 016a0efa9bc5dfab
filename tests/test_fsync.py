from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

from specflow.infra.fsync import fsync_directory, fsync_file, fsync_file_and_directory


class TestFsync:
    def test_file_and_directory_both_synced(self, tmp_path: Path) -> None:
        path = tmp_path / "doc.md"
        path.write_text("x", encoding="utf-8")

        with patch("specflow.infra.fsync.os.fsync") as os_fsync:
            fsync_file_and_directory(path)

        assert os_fsync.call_count == 2

    def test_real_calls_succeed(self, tmp_path: Path) -> None:
        path = tmp_path / "doc.md"
        path.write_text("x", encoding="utf-8")
        fsync_file(path)
        fsync_directory(tmp_path)
