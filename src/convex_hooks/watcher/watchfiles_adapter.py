from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Coroutine
from pathlib import Path
from typing import Any

from watchfiles import Change, awatch

logger = logging.getLogger(__name__)


def _accept_all(_path: Path) -> bool:
    return True


class WatchfilesWatcher:
    """Watch a directory for saved files and trigger a callback.

    Deletions are ignored. Implements the ``FileWatcherPort`` protocol.
    """

    def __init__(
        self,
        directory: str | Path,
        on_change: Callable[[list[Path]], Coroutine[Any, Any, None]],
        path_filter: Callable[[Path], bool] = _accept_all,
    ) -> None:
        self._directory = Path(directory)
        self._on_change = on_change
        self._path_filter = path_filter
        self._task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._watch())
        logger.info("Watcher started for %s", self._directory)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Watcher stopped for %s", self._directory)

    async def wait(self) -> None:
        if self._task is not None:
            await self._task

    async def _watch(self) -> None:
        async for changes in awatch(self._directory):
            saved = {Path(p) for change, p in changes if change != Change.deleted}
            paths = sorted(p for p in saved if self._path_filter(p))
            if paths:
                logger.info("Detected saves in %d file(s)", len(paths))
                try:
                    await self._on_change(paths)
                except Exception:
                    logger.exception("Error in watcher callback")
