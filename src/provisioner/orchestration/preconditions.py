"""
provisioner.orchestration.preconditions - Pre-Run Waits
=======================================================

Early in enrollment the data volume may still be read-only and the MDM
profile carrying our settings may not have arrived yet. These loops wait for
both with a fixed sleep granularity and a bounded number of polls.
"""

from __future__ import annotations

import asyncio
import os
import tempfile
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import structlog

logger = structlog.get_logger()

SleepFn = Callable[[float], Awaitable[None]]


def _is_writable(path: Path) -> bool:
    try:
        path.mkdir(parents=True, exist_ok=True)
        fd, scratch = tempfile.mkstemp(dir=path, prefix=".write-check-")
    except OSError:
        return False
    os.close(fd)
    try:
        os.unlink(scratch)
    except OSError:
        pass
    return True


async def wait_for_writable(
    path: Path,
    attempts: int = 30,
    interval: float = 1.0,
    sleep: SleepFn = asyncio.sleep,
) -> bool:
    """Wait until a file can be created in `path`.

    Returns:
        True once writable, False after `attempts` failed checks.
    """
    path = Path(path)
    for attempt in range(1, attempts + 1):
        if _is_writable(path):
            if attempt > 1:
                logger.info("storage_writable", path=str(path), attempts=attempt)
            return True
        logger.debug("storage_not_writable", path=str(path), attempt=attempt)
        if attempt < attempts:
            await sleep(interval)
    logger.error("storage_never_writable", path=str(path), attempts=attempts)
    return False


async def wait_for_managed_config(
    reader: Callable[[], dict[str, Any]],
    timeout: float = 300.0,
    interval: float = 5.0,
    sleep: SleepFn = asyncio.sleep,
) -> Optional[dict[str, Any]]:
    """Poll managed preferences until they provide a manifest URL.

    Args:
        reader: Returns normalized managed preference values.

    Returns:
        The managed values, or None if none appeared within `timeout`.
    """
    elapsed = 0.0
    while True:
        values = reader()
        if values.get("manifest_url"):
            logger.info("managed_config_available", waited=elapsed)
            return values
        if elapsed >= timeout:
            logger.warning("managed_config_timeout", timeout=timeout)
            return None
        await sleep(interval)
        elapsed += interval
