from __future__ import annotations

import asyncio
import logging
from pathlib import Path

log = logging.getLogger(__name__)


def _unlink(path: Path) -> bool:
    try:
        path.unlink()
    except FileNotFoundError:
        return True
    except OSError as exc:
        log.warning("Failed to delete temporary upload file %s: %s", path, exc)
        return False
    return True


async def remove_temporary_file(path: Path) -> bool:
    """Delete a temporary upload source; failures are logged, never raised."""
    removed = await asyncio.to_thread(_unlink, path)
    if removed:
        log.debug("Removed temporary upload file %s", path)
    return removed
