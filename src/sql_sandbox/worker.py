"""Background worker that reaps expired database copies.

Several service instances may run the sweeper at the same time; each copy
is dropped with ``DROP DATABASE IF EXISTS`` and its record deleted only if
it is still the current one, so overlapping sweeps are harmless.
"""

from __future__ import annotations

import asyncio
import logging

from sql_sandbox.sandbox.copies import CopyManager

logger = logging.getLogger(__name__)


async def run_sweeper(
    copies: CopyManager,
    interval_seconds: float = 300.0,
    name: str = "sweeper-1",
) -> None:
    """Long-running coroutine that sweeps expired copies every *interval_seconds*.

    Parameters
    ----------
    copies:
        The copy manager whose expired copies are removed.
    interval_seconds:
        Pause between two sweeps.
    name:
        Name used in log messages.
    """
    logger.info("Sweeper %s starting (interval=%ss)", name, interval_seconds)

    while True:
        try:
            deleted = await copies.sweep_expired_copies()
            logger.debug("Sweeper %s removed %d copies", name, deleted)
            await asyncio.sleep(interval_seconds)
        except asyncio.CancelledError:
            logger.info("Sweeper %s shutting down", name)
            break
        except Exception:
            logger.exception("Sweeper loop error, retrying in %ss", interval_seconds)
            await asyncio.sleep(interval_seconds)
