"""
Scan Workspaces
===============
Per-scan working directories under a common base directory.
"""

import asyncio
import logging
import shutil
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

logger = logging.getLogger(__name__)


class WorkspaceProvider:
    """Creates and removes `<base_dir>/<scan_id>` directories."""

    def __init__(self, base_dir: str):
        self.base_dir = Path(base_dir)

    def acquire(self, scan_id: str) -> Path:
        """
        Create an empty workspace for a scan.

        Leftovers from an earlier attempt with the same id are removed first.
        """
        path = self.base_dir / scan_id
        if path.exists():
            logger.warning(f"Removing stale workspace {path}")
            shutil.rmtree(path)
        path.mkdir(parents=True, mode=0o700)
        logger.debug(f"Acquired workspace {path}")
        return path

    def release(self, path: Path) -> None:
        if path.exists():
            shutil.rmtree(path)
            logger.debug(f"Released workspace {path}")

    @asynccontextmanager
    async def scoped(self, scan_id: str) -> AsyncIterator[Path]:
        """Workspace that is removed on every exit path."""
        path = await asyncio.to_thread(self.acquire, scan_id)
        try:
            yield path
        finally:
            try:
                await asyncio.to_thread(self.release, path)
            except OSError as e:
                logger.error(f"Failed to remove workspace {path}: {e}")
