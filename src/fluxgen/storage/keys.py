"""Storage key scheme shared by the blob store and the history index.

Both key families embed the batch timestamp (milliseconds since the epoch):

- blob key:    ``images/{timestamp}-{index}.png``
- history key: ``history:{timestamp}``

Within one batch ``(timestamp, index)`` is unique per attempt.  Two batches
started in the same millisecond share a timestamp, and the later writes
replace the earlier blobs and history record.
"""

from __future__ import annotations

import time

HISTORY_PREFIX = "history:"
IMAGE_PREFIX = "images/"


def current_timestamp() -> int:
    """Return the current time in whole milliseconds since the epoch."""
    return time.time_ns() // 1_000_000


def image_key(timestamp: int, index: int) -> str:
    """Build the blob key for image *index* (1-based) of batch *timestamp*."""
    return f"{IMAGE_PREFIX}{timestamp}-{index}.png"


def history_key(timestamp: int) -> str:
    """Build the index key for the history record of batch *timestamp*."""
    return f"{HISTORY_PREFIX}{timestamp}"


def timestamp_from_history_key(key: str) -> int | None:
    """Extract the timestamp suffix of a history key.

    Returns:
        The integer timestamp, or ``None`` if *key* is not a history key or
        its suffix is not an integer.
    """
    if not key.startswith(HISTORY_PREFIX):
        return None
    try:
        return int(key[len(HISTORY_PREFIX) :])
    except ValueError:
        return None
