"""Tests for banding, neighbour ranking and the fingerprint index."""

import asyncio
import random

from simrec.recommender.config import RecommenderConfig
from simrec.recommender.minhash import MinHashSketcher
from simrec.recommender.neighbors import NeighborFinder, band_signature, rank_neighbors
from simrec.recommender.store import SQLStore


def test_band_signature_xors_groups():
    """Test XOR folding of consecutive groups."""
    signature = [0b1000, 0b0100, 0b0010, 0b0001, 0b1111, 0b0000]

    assert band_signature(signature, band_size=2, capacity=32) == [0b1100, 0b0011, 0b1111]


def test_band_count_floors_and_respects_capacity():
    """Test floor(min(K, len) / G) bands."""
    signature = list(range(1, 12))

    assert len(band_signature(signature, band_size=4, capacity=32)) == 2
    assert len(band_signature(signature, band_size=4, capacity=4)) == 1
    assert band_signature(signature[:3], band_size=4, capacity=32) == []


def test_rank_neighbors_orders_by_shared_count():
    """Test ranking and the neighbour cap."""
    matches = ["u1", "u2", "u2", "u3", "u3", "u3", "u4"]

    assert rank_neighbors(matches, 2) == ["u3", "u2"]
    assert rank_neighbors(matches, 10)[:2] == ["u3", "u2"]
    assert len(rank_neighbors(matches, 10)) == 4
    assert rank_neighbors([], 5) == []


def _shared_bands(sketcher, left, right, band_size, capacity):
    left_bands = band_signature(sketcher.sketch(left), band_size, capacity)
    right_bands = set(band_signature(sketcher.sketch(right), band_size, capacity))
    return sum(1 for band in left_bands if band in right_bands)


def test_high_overlap_shares_more_bands_than_low_overlap():
    """Test that band collisions track history overlap on average."""
    rng = random.Random(1234)
    capacity, band_size = 32, 4
    high_total = low_total = 0

    for trial in range(40):
        sketcher = MinHashSketcher(capacity=capacity, salt=f"trial-{trial}".encode())
        base = [f"t{trial}-p{i}" for i in range(40)]

        high = base[:]
        high[rng.randrange(len(high))] = f"t{trial}-extra"
        low = base[:4] + [f"t{trial}-other{i}" for i in range(36)]

        high_total += _shared_bands(sketcher, base, high, band_size, capacity)
        low_total += _shared_bands(sketcher, base, low, band_size, capacity)

    assert high_total > low_total
    assert high_total > 40


def test_find_neighbors_replaces_rows_and_ranks(db_url):
    """Test the index round trip through the store."""
    config = RecommenderConfig(sketch_capacity=8, band_size=2, neighbor_cap=5)

    async def scenario():
        store = SQLStore.from_url(db_url)
        await store.create_schema()
        try:
            finder = NeighborFinder(store, config)
            await store.replace_fingerprints("twin", [11, 22, 33, 44])
            await store.replace_fingerprints("partial", [11, 99])
            await store.replace_fingerprints("stranger", [77])

            neighbors = await finder.find_neighbors("me", [1, 10, 2, 20, 3, 30, 4, 40])
            # bands: 1^10=11, 2^20=22, 3^30=29, 4^40=44
            assert neighbors == ["twin", "partial"]

            # Re-indexing with a new signature drops the old rows.
            await finder.find_neighbors("me", [5, 50])
            sharing = await store.query_users_sharing_fingerprint([11, 22, 44], "twin")
            assert "me" not in sharing
            return await store.query_users_sharing_fingerprint([5 ^ 50], "nobody")
        finally:
            await store.close()

    assert asyncio.run(scenario()) == ["me"]


def test_find_neighbors_small_signature_clears_index(db_url):
    """Test that a signature too small to band removes the user's rows."""
    config = RecommenderConfig(band_size=4)

    async def scenario():
        store = SQLStore.from_url(db_url)
        await store.create_schema()
        try:
            finder = NeighborFinder(store, config)
            await store.replace_fingerprints("me", [123])
            neighbors = await finder.find_neighbors("me", [1, 2])
            remaining = await store.query_users_sharing_fingerprint([123], "someone")
            return neighbors, remaining
        finally:
            await store.close()

    assert asyncio.run(scenario()) == ([], [])
