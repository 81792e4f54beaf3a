"""Tests for disk cleanup of old outputs."""

import os
import time
from unittest.mock import patch

from provisioning.cleanup import cleanup_if_low_disk, free_mb, remove_old_files

DAY = 24 * 3600


def _touch(path, age_seconds, size=10):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"x" * size)
    mtime = time.time() - age_seconds
    os.utime(path, (mtime, mtime))


class TestRemoveOldFiles:

    def test_only_old_files_removed(self, tmp_path):
        output = tmp_path / "output"
        _touch(output / "old.png", 2 * DAY, size=100)
        _touch(output / "new.png", 60)

        removed = remove_old_files([str(output)], max_age_hours=24)

        assert removed == {"files": 1, "dirs": 0, "bytes": 100}
        assert not (output / "old.png").exists()
        assert (output / "new.png").exists()

    def test_prunes_emptied_dirs_but_keeps_root(self, tmp_path):
        output = tmp_path / "output"
        _touch(output / "run1" / "frames" / "0001.png", 3 * DAY)
        _touch(output / "run2" / "keep.png", 10)

        removed = remove_old_files([str(output)])

        assert removed["files"] == 1
        assert removed["dirs"] == 2
        assert not (output / "run1").exists()
        assert (output / "run2" / "keep.png").exists()
        assert output.is_dir()

    def test_missing_dirs_ignored(self, tmp_path):
        assert remove_old_files([str(tmp_path / "nope")]) == {"files": 0, "dirs": 0, "bytes": 0}


class TestCleanupIfLowDisk:

    def test_enough_space_does_nothing(self, tmp_path):
        _touch(tmp_path / "output" / "old.png", 5 * DAY)
        with patch("provisioning.cleanup.free_mb", return_value=10_000):
            assert cleanup_if_low_disk(str(tmp_path), [str(tmp_path / "output")]) is None
        assert (tmp_path / "output" / "old.png").exists()

    def test_low_space_cleans(self, tmp_path):
        _touch(tmp_path / "output" / "old.png", 5 * DAY)
        with patch("provisioning.cleanup.free_mb", return_value=100):
            removed = cleanup_if_low_disk(str(tmp_path), [str(tmp_path / "output")], min_free_mb=512)
        assert removed["files"] == 1


def test_free_mb_reports_positive(tmp_path):
    assert free_mb(str(tmp_path)) > 0
