"""Tests for backup-before-overwrite."""

from __future__ import annotations

import re
from datetime import datetime
from pathlib import Path
from unittest.mock import patch

import pytest

from codesync.backup import (
    backup_path,
    create_backup,
    list_backups,
    restore_snapshot,
)
from codesync.errors import BackupFailed

from conftest import make_tree, read_tree

NOW = datetime(2026, 10, 19, 14, 30, 5)


@pytest.fixture
def live_dir(tmp_path: Path) -> Path:
    return make_tree(tmp_path / "Code" / "User", {
        "settings.json": '{"a": 1}',
        "snippets/go.json": "{}",
    })


class TestBackupPath:
    """Naming of snapshot directories."""

    def test_format(self, live_dir):
        assert backup_path(live_dir, NOW).name == "User_backup_20261019-143005"
        assert backup_path(live_dir, NOW).parent == live_dir.parent

    def test_collision_gets_suffix(self, live_dir):
        (live_dir.parent / "User_backup_20261019-143005").mkdir()
        (live_dir.parent / "User_backup_20261019-143005-1").mkdir()
        assert backup_path(live_dir, NOW).name == "User_backup_20261019-143005-2"


class TestCreateBackup:
    """Renaming the live directory aside."""

    def test_missing_directory_is_noop(self, tmp_path):
        assert create_backup(tmp_path / "User") is None
        assert list(tmp_path.iterdir()) == []

    def test_rename_preserves_content(self, live_dir):
        before = read_tree(live_dir)
        snap = create_backup(live_dir)

        assert snap is not None
        assert not live_dir.exists()
        assert snap.original == live_dir
        assert re.fullmatch(r"User_backup_\d{8}-\d{6}", snap.path.name)
        assert read_tree(snap.path) == before

    def test_two_backups_in_same_second(self, live_dir):
        first = create_backup(live_dir, now=NOW)
        make_tree(live_dir, {"settings.json": "{}"})
        second = create_backup(live_dir, now=NOW)

        assert first.path != second.path
        assert second.path.name == "User_backup_20261019-143005-1"

    def test_rename_failure_raises(self, live_dir):
        before = read_tree(live_dir)
        with patch.object(Path, "rename", side_effect=PermissionError("locked by another process")):
            with pytest.raises(BackupFailed) as excinfo:
                create_backup(live_dir)

        assert "locked" in str(excinfo.value)
        assert excinfo.value.path == live_dir
        assert read_tree(live_dir) == before


class TestRestoreSnapshot:
    """Moving a snapshot back."""

    def test_restore(self, live_dir):
        before = read_tree(live_dir)
        snap = create_backup(live_dir)
        restore_snapshot(snap)
        assert read_tree(live_dir) == before
        assert not snap.path.exists()

    def test_restore_refuses_occupied_original(self, live_dir):
        snap = create_backup(live_dir)
        live_dir.mkdir()
        with pytest.raises(BackupFailed):
            restore_snapshot(snap)
        assert snap.path.exists()


class TestListBackups:
    """Enumerating snapshots."""

    def test_newest_first(self, live_dir):
        parent = live_dir.parent
        for name in (
            "User_backup_20260101-000000",
            "User_backup_20261019-143005",
            "User_backup_20261019-143005-1",
            "User_backup_20250505-121212",
        ):
            (parent / name).mkdir()
        (parent / "User_backup_notatimestamp").mkdir()
        (parent / "Other_backup_20261019-143005").mkdir()
        (parent / "User_backup_20261020-000000").write_text("a file")

        names = [s.path.name for s in list_backups(live_dir)]
        assert names == [
            "User_backup_20261019-143005-1",
            "User_backup_20261019-143005",
            "User_backup_20260101-000000",
            "User_backup_20250505-121212",
        ]

    def test_created_at_parsed(self, live_dir):
        (live_dir.parent / "User_backup_20261019-143005").mkdir()
        [snap] = list_backups(live_dir)
        assert snap.created_at == NOW
        assert snap.original == live_dir

    def test_missing_parent(self, tmp_path):
        assert list_backups(tmp_path / "nope" / "User") == []
