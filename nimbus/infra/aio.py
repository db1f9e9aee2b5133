from __future__ import annotations

import asyncio
from collections.abc import Awaitable


async def gather_or_cancel[T](*aws: Awaitable[T]) -> list[T]:
    """Like ``asyncio.gather`` but a failure cancels and awaits the siblings.

    The first exception is re-raised only once every other task has
    finished, so nothing keeps running behind the caller's back.
    """
    tasks = [asyncio.ensure_future(a) for a in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
