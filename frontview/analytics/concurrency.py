"""
Concurrent Query Helpers
========================

The aggregators run independent store round-trips side by side (current vs.
comparison snapshot, page vs. count). Plain asyncio.gather() propagates the
first exception but leaves the sibling running; its result or error is then
never retrieved and asyncio logs "Task exception was never retrieved".

gather_or_cancel() keeps gather's ordering and error semantics and, on the
first failure, cancels what is still running and waits for it to settle.

RELATED FILES
-------------
- frontview/analytics/grouped.py
- frontview/analytics/stats.py
- frontview/analytics/tables.py
"""

import asyncio
import logging
from typing import Any, Awaitable, List

logger = logging.getLogger(__name__)


async def gather_or_cancel(*aws: Awaitable[Any]) -> List[Any]:
    """
    Await every awaitable concurrently; results come back in argument order.

    On the first exception the remaining tasks are cancelled, awaited, and
    the original exception is re-raised.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        pending = [task for task in tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            logger.debug(f"[CONCURRENCY] Cancelling {len(pending)} sibling task(s) after a failure")
        # Retrieve every outcome so no task exception is left unobserved
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
