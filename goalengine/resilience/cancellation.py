"""
Cooperative cancellation.

Every suspension point in the engine waits through sleep_or_cancelled so a
cancellation signal is observed promptly instead of after a full sleep.
"""

import asyncio


async def sleep_or_cancelled(delay: float, cancel_event: asyncio.Event | None = None) -> bool:
    """
    Sleep for ``delay`` seconds unless ``cancel_event`` fires first.

    Returns True if the wait ended because of cancellation.
    """
    if cancel_event is None:
        await asyncio.sleep(delay)
        return False

    if cancel_event.is_set():
        return True

    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return False
    return True
