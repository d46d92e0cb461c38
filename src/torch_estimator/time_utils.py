"""Time source used to timestamp predictions and observations."""

import time


def unix_time() -> float:
    """Return the current unix time in decimal seconds.

    Returns:
        float: Seconds since 00:00 UTC on Jan 1 1970
    """
    return time.time()
