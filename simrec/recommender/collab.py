"""Collaborative sampling from neighbour histories.

Products viewed by more neighbours are more likely to be drawn. Unlike
content sampling, a drawn product is simply deleted from the distribution
and the remaining weights are not rescaled; the last entry of the weighted
draw absorbs the missing mass.
"""

import asyncio
import logging
from collections import defaultdict
from typing import AbstractSet, Dict, Iterable, List, Optional, Set

from simrec.recommender.config import RecommenderConfig
from simrec.recommender.records import Product, ViewEvent
from simrec.recommender.sampling import DEFAULT_MAX_DRAW_RETRIES, RandomSource, weighted_draw
from simrec.recommender.store import SQLStore

# Configure module logger
logger = logging.getLogger(__name__)


def build_product_weights(
    events: Iterable[ViewEvent],
    exclude: Optional[AbstractSet[str]] = None,
) -> Dict[str, float]:
    """Normalized share of neighbours who viewed each product.

    Args:
        events: Neighbour view events.
        exclude: Product ids that must not be recommended.

    Returns:
        Mapping of product id to weight, summing to 1 (empty if no events
        survive the exclusion).
    """
    exclude = exclude or set()
    viewers: Dict[str, Set[str]] = defaultdict(set)
    for event in events:
        if event.product_id in exclude:
            continue
        viewers[event.product_id].add(event.user_key)

    total = sum(len(users) for users in viewers.values())
    if total == 0:
        return {}
    return {product_id: len(users) / total for product_id, users in viewers.items()}


def sample_collab(
    product_weights: Dict[str, float],
    n: int,
    rng: RandomSource,
    max_retries: int = DEFAULT_MAX_DRAW_RETRIES,
) -> List[str]:
    """Draw up to ``n`` distinct product ids without replacement."""
    remaining = dict(product_weights)
    picks: List[str] = []

    while len(picks) < n and remaining:
        keys = list(remaining)
        idx = weighted_draw([remaining[key] for key in keys], rng, max_retries)
        if idx is None:
            break
        picks.append(keys[idx])
        del remaining[keys[idx]]

    return picks


class CollabSampler:
    """Samples products from the histories of neighbour users."""

    def __init__(self, store: SQLStore, config: RecommenderConfig):
        self.store = store
        self.config = config

    async def sample(
        self,
        neighbors: List[str],
        exclude: AbstractSet[str],
        target: int,
        now: int,
        rng: RandomSource,
    ) -> List[Product]:
        """Draw ``target`` products viewed by ``neighbors``.

        Args:
            neighbors: Neighbour user keys.
            exclude: Product ids the requesting user should not get.
            target: Number of products wanted.
            now: Current time in milliseconds.
            rng: Per-request source of uniform floats.

        Returns:
            Resolved products; ids no longer in the catalogue are dropped.

        Raises:
            StoreError: If neighbour histories or products cannot be read.
        """
        if target <= 0 or not neighbors:
            return []

        since = now - self.config.history_max_age_ms
        events = await self.store.query_history_for_users(neighbors, since)
        weights = build_product_weights(events, exclude)
        product_ids = sample_collab(weights, target, rng, self.config.max_draw_retries)

        resolved = await asyncio.gather(*(self.store.query_product(pid) for pid in product_ids))
        picks = [product for product in resolved if product is not None]

        logger.debug(
            "Sampled collaborative candidates",
            extra={
                "num_neighbors": len(neighbors),
                "num_events": len(events),
                "num_products": len(weights),
                "drawn": len(picks),
            },
        )
        return picks
