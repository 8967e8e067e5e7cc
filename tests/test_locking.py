"""Tests for reviewtask.runner.locking module."""

import os

import pytest

from reviewtask.runner.locking import (
    LockTimeout,
    file_lock,
    is_review_unit_locked,
    read_lock_owner,
    review_unit_lock,
    run_lock_path,
)


class TestFileLock:
    """Tests for file_lock()."""

    def test_creates_parent_and_writes_pid(self, tmp_path):
        lock_file = tmp_path / "locks" / "x.lock"
        with file_lock(lock_file, timeout=1, lock_name="test lock"):
            assert lock_file.read_text().strip() == str(os.getpid())
        assert lock_file.exists()

    def test_second_holder_times_out(self, tmp_path):
        lock_file = tmp_path / "x.lock"
        with file_lock(lock_file, timeout=1, lock_name="test lock"):
            with pytest.raises(LockTimeout, match="test lock"):
                with file_lock(lock_file, timeout=0.2, lock_name="test lock"):
                    pass

    def test_released_on_exception(self, tmp_path):
        lock_file = tmp_path / "x.lock"
        with pytest.raises(RuntimeError):
            with file_lock(lock_file, timeout=1, lock_name="test lock"):
                raise RuntimeError("boom")
        with file_lock(lock_file, timeout=0, lock_name="test lock"):
            pass


class TestReviewUnitLock:
    """Tests for the per-PR run lock helpers."""

    def test_lock_path(self, tmp_path):
        assert run_lock_path(tmp_path, 42) == tmp_path / "locks" / "PR-42.lock"

    def test_is_locked(self, tmp_path):
        assert not is_review_unit_locked(tmp_path, 42)
        with review_unit_lock(tmp_path, 42, timeout=1):
            assert is_review_unit_locked(tmp_path, 42)
            assert not is_review_unit_locked(tmp_path, 43)
        assert not is_review_unit_locked(tmp_path, 42)

    def test_different_prs_in_parallel(self, tmp_path):
        with review_unit_lock(tmp_path, 1, timeout=0):
            with review_unit_lock(tmp_path, 2, timeout=0):
                pass

    def test_read_lock_owner(self, tmp_path):
        assert read_lock_owner(tmp_path, 42) is None
        with review_unit_lock(tmp_path, 42, timeout=1):
            assert read_lock_owner(tmp_path, 42) == os.getpid()

    def test_read_lock_owner_garbage(self, tmp_path):
        path = run_lock_path(tmp_path, 42)
        path.parent.mkdir(parents=True)
        path.write_text("not a pid")
        assert read_lock_owner(tmp_path, 42) is None
