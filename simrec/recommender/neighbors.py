"""Locality-sensitive neighbour search over history signatures.

Signatures are cut into bands of ``band_size`` values and each band is
folded into one fingerprint with XOR. Users are indexed by fingerprint, so
two users whose signatures agree on a whole band collide in the index. The
more bands two users share, the more their viewing histories are likely to
overlap; this approximates Jaccard similarity but does not guarantee it.
"""

import heapq
import logging
import operator
from collections import Counter
from functools import reduce
from typing import Iterable, List, Sequence

from simrec.recommender.config import RecommenderConfig
from simrec.recommender.store import SQLStore

# Configure module logger
logger = logging.getLogger(__name__)


def band_signature(signature: Sequence[int], band_size: int, capacity: int) -> List[int]:
    """Fold a signature into XOR fingerprints.

    Args:
        signature: Hash values in pop-largest-first order.
        band_size: Number of values per band.
        capacity: Sketch capacity; values beyond it are ignored.

    Returns:
        ``min(capacity, len(signature)) // band_size`` fingerprints.
    """
    num_bands = min(capacity, len(signature)) // band_size
    return [
        reduce(operator.xor, signature[band * band_size : (band + 1) * band_size], 0)
        for band in range(num_bands)
    ]


def rank_neighbors(matches: Iterable[str], limit: int) -> List[str]:
    """Top ``limit`` user keys by number of shared fingerprints.

    ``matches`` holds one entry per shared fingerprint row. Ties come out in
    priority-queue order.
    """
    counts = Counter(matches)
    heap = [(-count, user_key) for user_key, count in counts.items()]
    heapq.heapify(heap)
    return [heapq.heappop(heap)[1] for _ in range(min(limit, len(heap)))]


class NeighborFinder:
    """Maintains the fingerprint index and queries it for similar users."""

    def __init__(self, store: SQLStore, config: RecommenderConfig):
        self.store = store
        self.config = config

    async def find_neighbors(self, user_key: str, signature: Sequence[int]) -> List[str]:
        """Index ``user_key`` under its current bands and return neighbours.

        The user's previous fingerprint rows are always replaced, even when
        the new signature is too small to form a band.

        Args:
            user_key: Key of the requesting user.
            signature: The user's current signature.

        Returns:
            Up to ``neighbor_cap`` other user keys, most shared bands first.

        Raises:
            StoreError: If the index cannot be updated or queried.
        """
        bands = band_signature(signature, self.config.band_size, self.config.sketch_capacity)
        await self.store.replace_fingerprints(user_key, bands)

        if not bands:
            logger.debug("Signature too small to band", extra={"signature_size": len(signature)})
            return []

        matches = await self.store.query_users_sharing_fingerprint(bands, user_key)
        neighbors = rank_neighbors(matches, self.config.neighbor_cap)

        logger.info(
            "Found neighbour users",
            extra={"num_bands": len(bands), "num_matches": len(matches), "num_neighbors": len(neighbors)},
        )
        return neighbors
