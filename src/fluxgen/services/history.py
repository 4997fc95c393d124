"""History listing over the expiring index store.

The index store enumerates keys in no particular order, so the listing:

1. collects every live ``history:`` key;
2. orders the keys by their timestamp suffix (newest first) and keeps the
   first ``limit``;
3. fetches and parses each record;
4. re-sorts the parsed records by ``timestamp`` descending.

Records that disappear between listing and fetching (expiry) or that cannot
be parsed are skipped with a warning rather than failing the whole listing.
"""

from __future__ import annotations

import asyncio
import logging

from pydantic import ValidationError

from fluxgen.api.models import HistoryRecord
from fluxgen.storage.index_store import IndexStore
from fluxgen.storage.keys import HISTORY_PREFIX, timestamp_from_history_key

logger = logging.getLogger(__name__)


async def list_history(index: IndexStore, limit: int = 20) -> list[HistoryRecord]:
    """Return up to *limit* history records, newest first."""
    keys = await index.list_keys(HISTORY_PREFIX)

    # Keys with a non-numeric suffix sort last; they are still fetched and
    # parsed so the stored timestamp decides their final position.
    keys.sort(key=lambda k: timestamp_from_history_key(k) or -1, reverse=True)
    selected = keys[:limit]

    raw_values = await asyncio.gather(*(index.get(key) for key in selected))

    records: list[HistoryRecord] = []
    for key, raw in zip(selected, raw_values):
        if raw is None:
            continue
        try:
            records.append(HistoryRecord.model_validate_json(raw))
        except ValidationError:
            logger.warning("Skipping malformed history record %s.", key)

    records.sort(key=lambda record: record.timestamp, reverse=True)
    return records
