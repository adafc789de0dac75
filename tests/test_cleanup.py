"""Tests for temp file cleanup."""
import asyncio
import os
import time

import pytest

from drivebot.cleanup import TempFileJanitor, remove_file, sweep_temp_dir


def test_remove_file(tmp_path):
    path = tmp_path / "done.mp4"
    path.write_bytes(b"data")

    assert remove_file(path)
    assert not path.exists()


def test_remove_missing_file_is_quiet(tmp_path):
    assert not remove_file(tmp_path / "gone.mp4")
    assert not remove_file(None)


def test_sweep_removes_only_old_files(tmp_path):
    old = tmp_path / "old.bin"
    fresh = tmp_path / "fresh.bin"
    old.write_bytes(b"1")
    fresh.write_bytes(b"2")
    now = time.time()
    os.utime(old, (now - 7200, now - 7200))
    (tmp_path / "subdir").mkdir()

    removed = sweep_temp_dir(tmp_path, max_age_seconds=3600, now=now)

    assert removed == 1
    assert not old.exists()
    assert fresh.exists()
    assert (tmp_path / "subdir").exists()


def test_sweep_missing_directory(tmp_path):
    assert sweep_temp_dir(tmp_path / "nope", 60) == 0


@pytest.mark.asyncio
async def test_janitor_sweeps_periodically(tmp_path):
    stale = tmp_path / "stale.bin"
    stale.write_bytes(b"x")
    past = time.time() - 100
    os.utime(stale, (past, past))
    janitor = TempFileJanitor(tmp_path, interval_seconds=0.01, max_age_seconds=10)

    janitor.start()
    assert janitor.running
    for _ in range(100):
        if not stale.exists():
            break
        await asyncio.sleep(0.01)
    await janitor.stop()

    assert not stale.exists()
    assert not janitor.running


@pytest.mark.asyncio
async def test_janitor_stop_without_start(tmp_path):
    janitor = TempFileJanitor(tmp_path, interval_seconds=1, max_age_seconds=1)

    await janitor.stop()

    assert not janitor.running
