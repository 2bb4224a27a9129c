"""Tests for collaborative sampling and the final mix."""

import asyncio
import math

import numpy as np
import pytest

from simrec.recommender.collab import CollabSampler, build_product_weights, sample_collab
from simrec.recommender.config import DAY_MS, RecommenderConfig
from simrec.recommender.mixer import mix_recommendations, shuffle_in_place
from simrec.recommender.records import Product, ViewEvent
from simrec.recommender.store import SQLStore

NOW = 1_700_000_000_000


def view(user, product, age_days=1):
    return ViewEvent(user, product, NOW - age_days * DAY_MS)


# ===== build_product_weights =====


def test_product_weights_count_distinct_neighbours():
    """Test frequency = distinct viewers, normalized."""
    events = [view("u1", "p1"), view("u2", "p1"), view("u2", "p2"), view("u3", "p1")]
    weights = build_product_weights(events)

    assert weights == pytest.approx({"p1": 0.75, "p2": 0.25})
    assert math.isclose(sum(weights.values()), 1.0)


def test_product_weights_apply_exclusions():
    """Test that excluded products never get weight."""
    events = [view("u1", "p1"), view("u1", "p2"), view("u2", "p3")]
    weights = build_product_weights(events, exclude={"p1"})

    assert set(weights) == {"p2", "p3"}
    assert build_product_weights(events, exclude={"p1", "p2", "p3"}) == {}


# ===== sample_collab =====


def test_sample_collab_without_replacement(sequence_rng):
    """Test that each draw deletes the key without rescaling the rest."""
    weights = {"p1": 0.5, "p2": 0.3, "p3": 0.2}
    # 0.1 -> p1; remaining p2:0.3, p3:0.2 (sum 0.5); 0.9 -> tail p3; 0.0 -> p2
    picks = sample_collab(weights, 3, sequence_rng([0.1, 0.9, 0.0]))

    assert picks == ["p1", "p3", "p2"]


def test_sample_collab_stops_when_exhausted():
    """Test that the count is capped by the number of products."""
    picks = sample_collab({"p1": 0.6, "p2": 0.4}, 5, np.random.default_rng(0))
    assert sorted(picks) == ["p1", "p2"]
    assert sample_collab({}, 3, np.random.default_rng(0)) == []


# ===== CollabSampler =====


def test_collab_sampler_respects_window_and_exclusions(db_url, sequence_rng):
    """Test retention filtering, exclusions and product resolution."""
    config = RecommenderConfig()

    async def scenario():
        store = SQLStore.from_url(db_url)
        await store.create_schema()
        try:
            for pid in ("p1", "p2", "p3"):
                await store.upsert_class(pid, "mug", NOW, name=f"Mug {pid}", picture=f"https://img/{pid}")
            await store.upsert_history("n1", "p1", NOW - DAY_MS)
            await store.upsert_history("n2", "p2", NOW - DAY_MS)
            await store.upsert_history("n2", "p3", NOW - 40 * DAY_MS)
            await store.upsert_history("n1", "gone", NOW - DAY_MS)

            sampler = CollabSampler(store, config)
            picks = await sampler.sample(
                ["n1", "n2"], exclude={"p1"}, target=5, now=NOW, rng=sequence_rng([0.3, 0.3])
            )
            empty = await sampler.sample([], exclude=set(), target=5, now=NOW, rng=sequence_rng([]))
            return picks, empty
        finally:
            await store.close()

    picks, empty = asyncio.run(scenario())

    # p3 is outside the retention window; "gone" is not in the catalogue.
    assert [p.product_id for p in picks] == ["p2"]
    assert picks[0] == Product("p2", "Mug p2", "https://img/p2")
    assert empty == []


# ===== mixer =====


def _products(n):
    return [Product(f"p{i}", f"P{i}", f"https://img/p{i}") for i in range(n)]


def test_shuffle_is_fisher_yates(sequence_rng):
    """Test the swap sequence for a fixed random stream."""
    items = _products(3)
    # i=2: j=int(0.0*3)=0 -> [p2,p1,p0]; i=1: j=int(0.99*2)=1 -> unchanged
    shuffle_in_place(items, sequence_rng([0.0, 0.99]))

    assert [p.product_id for p in items] == ["p2", "p1", "p0"]


def test_mix_caps_total_and_keeps_items():
    """Test that the mix is a permutation capped at the total."""
    content, collab = _products(4), _products(7)[4:]
    mixed = mix_recommendations(content, collab, 6, np.random.default_rng(3))

    assert len(mixed) == 6
    assert set(mixed) <= set(content) | set(collab)
    assert len(set(mixed)) == 6


def test_mix_with_no_collab_falls_back_to_content():
    """Test content-only output when collaborative sampling found nothing."""
    content = _products(4)
    mixed = mix_recommendations(content, [], 6, np.random.default_rng(0))

    assert sorted(mixed) == sorted(content)


def test_collab_sampler_ignores_uncatalogued_views(db_url):
    """Test that views of unknown products do not use up the target."""
    config = RecommenderConfig()

    async def scenario():
        store = SQLStore.from_url(db_url)
        await store.create_schema()
        try:
            for pid in ("p1", "p2"):
                await store.upsert_class(pid, "mug", NOW, name=pid, picture=pid)
            for user, own in (("n1", "p1"), ("n2", "p2")):
                for ghost in ("g1", "g2", "g3"):
                    await store.upsert_history(user, ghost, NOW - DAY_MS)
                await store.upsert_history(user, own, NOW - DAY_MS)

            sampler = CollabSampler(store, config)
            return await sampler.sample(
                ["n1", "n2"], exclude=set(), target=2, now=NOW, rng=np.random.default_rng(0)
            )
        finally:
            await store.close()

    picks = asyncio.run(scenario())

    assert sorted(p.product_id for p in picks) == ["p1", "p2"]
