import asyncio
import logging
import os
import time
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)


def remove_file(path: Union[str, Path, None]) -> bool:
    """Delete a temp file, logging (not raising) on failure"""
    if not path:
        return False
    try:
        os.unlink(path)
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning("Could not delete temp file %s: %s", path, e)
        return False


def sweep_temp_dir(directory: Union[str, Path], max_age_seconds: float, now: Optional[float] = None) -> int:
    """Delete files in directory older than max_age_seconds; returns how many went"""
    directory = Path(directory)
    if not directory.is_dir():
        return 0

    now = time.time() if now is None else now
    removed = 0
    for entry in directory.iterdir():
        try:
            if not entry.is_file():
                continue
            if now - entry.stat().st_mtime > max_age_seconds:
                entry.unlink()
                removed += 1
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning("Could not sweep %s: %s", entry, e)

    if removed:
        logger.info("Cleaned up %d temporary file(s) in %s", removed, directory)
    return removed


class TempFileJanitor:
    """Periodically removes orphaned downloads left behind by failed handlers"""

    def __init__(self, directory: Union[str, Path], interval_seconds: float, max_age_seconds: float):
        self.directory = Path(directory)
        self.interval_seconds = interval_seconds
        self.max_age_seconds = max_age_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def sweep_once(self) -> int:
        return await asyncio.to_thread(sweep_temp_dir, self.directory, self.max_age_seconds)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.sweep_once()
            except Exception:
                logger.exception("Temp directory sweep failed")
