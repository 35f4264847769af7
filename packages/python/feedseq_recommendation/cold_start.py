from __future__ import annotations

import logging
from typing import Any, Dict, List, Protocol, Sequence

from feedseq_core.errors import InvalidCountError
from feedseq_core.rng import Rng, resolve_rng

log = logging.getLogger(__name__)


class CandidateStore(Protocol):
    def popular_recent(self, limit: int) -> Sequence[str]:
        """Candidate ids ordered by image count, then latest image time (both desc)."""
        ...


def build_cold_start_query(limit: int, *, multiplier: int = 2) -> List[Dict[str, Any]]:
    """Aggregation pipeline over the gallery collection backing popular_recent()."""
    return [
        {"$unwind": "$images"},
        {"$match": {"images.imageUrl": {"$exists": True, "$ne": None}}},
        {
            "$lookup": {
                "from": "chats",
                "localField": "chatId",
                "foreignField": "_id",
                "as": "chat",
            }
        },
        {"$unwind": "$chat"},
        {"$match": {"chat.visibility": "public"}},
        {
            "$group": {
                "_id": "$chatId",
                "imageCount": {"$sum": 1},
                "latestImage": {"$max": "$images.createdAt"},
            }
        },
        {"$sort": {"imageCount": -1, "latestImage": -1}},
        {"$limit": limit * multiplier},
    ]


def cold_start_pool(
    store: CandidateStore,
    limit: int = 20,
    *,
    multiplier: int = 2,
    rng: Rng | None = None,
) -> List[str]:
    """
    Seed pool for a viewer with no history: over-fetch popular/recent ids,
    shuffle, keep `limit`. Ranking may still run on the result.
    """
    if limit <= 0:
        raise InvalidCountError(f"limit must be positive, got {limit}")
    ids = [str(i) for i in store.popular_recent(limit * multiplier)]
    pool = resolve_rng(rng).shuffled(ids)[:limit]
    log.debug("cold start pool: fetched=%d kept=%d", len(ids), len(pool))
    return pool
