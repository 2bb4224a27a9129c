"""Weighted sampling without replacement across class pools.

Content-based recommendations are drawn class by class: a class is picked in
proportion to its weight, then a uniformly random candidate is taken out of
that class's pool. When a pool runs dry it is dropped and the remaining
weights are scaled back up so they again sum to 1.

Randomness comes from the caller: anything exposing ``random() -> float`` in
``[0, 1)`` works, e.g. a ``numpy.random.Generator`` created per request.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence

from simrec.recommender.records import Product

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_MAX_DRAW_RETRIES = 64
WEIGHT_EPSILON = 1e-12


class RandomSource(Protocol):
    def random(self) -> float: ...


def weighted_draw(
    weights: Sequence[float],
    rng: RandomSource,
    max_retries: int = DEFAULT_MAX_DRAW_RETRIES,
) -> Optional[int]:
    """Pick an index with probability proportional to its weight.

    Draws ``r`` in ``[0, 1)`` and walks the weights with a running lower
    bound ``bar``, selecting the first entry where ``r - bar <= weight``. The
    last entry takes whatever is left over, which absorbs floating point
    rounding when the weights do not sum to exactly 1.

    Zero-weight entries are never valid targets. A draw that lands on one is
    repeated, and after ``max_retries`` attempts the heaviest entry is
    returned so the loop always terminates.

    Args:
        weights: Weights in draw order.
        rng: Source of uniform floats in ``[0, 1)``.
        max_retries: Number of draws before falling back.

    Returns:
        Selected index, or None if there is no positive weight.
    """
    if not weights or sum(w for w in weights if w > 0) <= WEIGHT_EPSILON:
        return None

    last = len(weights) - 1
    for _ in range(max_retries):
        r = rng.random()
        bar = 0.0
        for i, weight in enumerate(weights):
            if r - bar > weight and i != last:
                bar += weight
                continue
            if weight > 0:
                return i
            break

    fallback = max(range(len(weights)), key=lambda i: weights[i])
    logger.warning(
        "Weighted draw fell back to heaviest entry",
        extra={"max_retries": max_retries, "index": fallback},
    )
    return fallback


@dataclass
class Pool:
    """Candidates of one class and the class's current weight.

    The order of ``candidates`` carries no meaning: removal swaps the chosen
    item with the last one and pops.
    """

    label: str
    weight: float
    candidates: List[Product] = field(default_factory=list)


class WeightedPools:
    """Ordered class pools whose weights always sum to 1."""

    def __init__(
        self,
        class_weights: Dict[str, float],
        candidates: Dict[str, Sequence[Product]],
    ):
        seen = set()
        self.pools: List[Pool] = []
        for label, weight in class_weights.items():
            unique = []
            for product in candidates.get(label, ()):
                if product.product_id in seen:
                    continue
                seen.add(product.product_id)
                unique.append(product)
            self.pools.append(Pool(label=label, weight=weight, candidates=unique))

        # Classes without candidates can never be drawn from.
        for idx in reversed(range(len(self.pools))):
            if not self.pools[idx].candidates:
                self.remove(idx)

    def __len__(self) -> int:
        return len(self.pools)

    @property
    def weights(self) -> List[float]:
        return [pool.weight for pool in self.pools]

    def total_weight(self) -> float:
        return sum(self.weights)

    def total_candidates(self) -> int:
        return sum(len(pool.candidates) for pool in self.pools)

    def remove(self, idx: int) -> None:
        """Drop pool ``idx`` and rescale the rest by ``1 / (1 - w)``.

        When the removed pool held all of the weight the remaining pools (if
        any) carried none; they are left at zero instead of dividing by zero.
        """
        removed = self.pools.pop(idx)
        if not self.pools:
            return

        remaining = 1.0 - removed.weight
        if remaining <= WEIGHT_EPSILON:
            logger.debug(
                "Removed pool held all weight, remaining pools are degenerate",
                extra={"label": removed.label, "remaining_pools": len(self.pools)},
            )
            for pool in self.pools:
                pool.weight = 0.0
            return

        for pool in self.pools:
            pool.weight = pool.weight / remaining

    def take(self, idx: int, rng: RandomSource) -> Product:
        """Remove and return a uniformly random candidate from pool ``idx``."""
        candidates = self.pools[idx].candidates
        pick = min(int(rng.random() * len(candidates)), len(candidates) - 1)

        product = candidates[pick]
        candidates[pick] = candidates[-1]
        candidates.pop()

        if not candidates:
            self.remove(idx)
        return product


def sample_content(
    class_weights: Dict[str, float],
    candidates: Dict[str, Sequence[Product]],
    n: int,
    rng: RandomSource,
    max_retries: int = DEFAULT_MAX_DRAW_RETRIES,
) -> List[Product]:
    """Draw up to ``n`` distinct products across weighted class pools.

    Args:
        class_weights: Class distribution, e.g. from ``calc_class_weights``.
        candidates: Candidate products per class. Lists may be empty and are
            not modified.
        n: Number of products requested.
        rng: Per-request source of uniform floats.
        max_retries: Redraws allowed per pick before the fallback.

    Returns:
        ``min(n, total candidates)`` products in draw order, or fewer if the
        distribution degenerates to zero weight.
    """
    pools = WeightedPools(class_weights, candidates)
    target = min(n, pools.total_candidates())

    picks: List[Product] = []
    while len(picks) < target:
        idx = weighted_draw(pools.weights, rng, max_retries)
        if idx is None:
            logger.warning(
                "Class distribution has no weight left, stopping early",
                extra={"drawn": len(picks), "target": target},
            )
            break
        picks.append(pools.take(idx, rng))

    logger.debug(
        "Sampled content-based candidates",
        extra={"requested": n, "drawn": len(picks), "num_classes": len(class_weights)},
    )

    return picks
