"""Merge content and collaborative picks into the final list."""

from typing import List, Sequence

from simrec.recommender.records import Product
from simrec.recommender.sampling import RandomSource


def shuffle_in_place(items: List[Product], rng: RandomSource) -> None:
    """Fisher-Yates shuffle driven by ``rng.random()``."""
    for i in range(len(items) - 1, 0, -1):
        j = min(int(rng.random() * (i + 1)), i)
        items[i], items[j] = items[j], items[i]


def mix_recommendations(
    content: Sequence[Product],
    collab: Sequence[Product],
    total: int,
    rng: RandomSource,
) -> List[Product]:
    """Concatenate both lists, shuffle, and cap at ``total`` items."""
    combined = list(content) + list(collab)
    shuffle_in_place(combined, rng)
    return combined[:total]
