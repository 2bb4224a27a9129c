"""Tests for the SQLAlchemy store and the fake data seeding script."""

import asyncio
import sys
from pathlib import Path

import pytest

from simrec.api.exceptions import StoreError
from simrec.recommender.config import DAY_MS
from simrec.recommender.records import HistoryRow, Product, ProductClassRecord
from simrec.recommender.store import SQLStore, to_signed64

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from scripts.generate_fake_data import generate_fake_catalog, generate_fake_views, seed_store

NOW = 1_700_000_000_000


def run_with_store(db_url, body):
    async def scenario():
        store = SQLStore.from_url(db_url)
        await store.create_schema()
        try:
            return await body(store)
        finally:
            await store.close()

    return asyncio.run(scenario())


def test_signed_conversion():
    assert to_signed64(5) == 5
    assert to_signed64(2**63 - 1) == 2**63 - 1
    assert to_signed64(2**64 - 1) == -1


def test_class_upsert_overwrites(db_url):
    """Test that classification writes are last-write-wins."""

    async def body(store):
        assert await store.query_class("p1") is None
        await store.upsert_class("p1", "mug", NOW, name="Mug", picture="https://img/1")
        await store.upsert_class("p1", "cup", NOW + 5, name="Cup", picture="https://img/1b")
        return await store.query_class("p1"), await store.query_product("p1")

    record, product = run_with_store(db_url, body)

    assert record == ProductClassRecord("p1", "cup", NOW + 5)
    assert product == Product("p1", "Cup", "https://img/1b")


def test_query_by_class_excludes_product(db_url):
    async def body(store):
        for pid, label in [("p1", "mug"), ("p2", "mug"), ("p3", "ball")]:
            await store.upsert_class(pid, label, NOW, name=pid, picture=pid)
        return (
            await store.query_by_class("mug", exclude_product_id="p1"),
            await store.query_by_class("mug"),
        )

    excluded, everything = run_with_store(db_url, body)

    assert [p.product_id for p in excluded] == ["p2"]
    assert sorted(p.product_id for p in everything) == ["p1", "p2"]


def test_history_upsert_and_recency_order(db_url):
    """Test the joined, most-recent-first history query."""

    async def body(store):
        for pid in ("p1", "p2", "p3", "cur"):
            await store.upsert_class(pid, f"class-{pid}", NOW, name=pid, picture=pid)
        await store.upsert_history("u", "p1", NOW - 3 * DAY_MS)
        await store.upsert_history("u", "p2", NOW - 2 * DAY_MS)
        await store.upsert_history("u", "p3", NOW - 1 * DAY_MS)
        await store.upsert_history("u", "cur", NOW)
        # Revisiting p1 moves it to the front.
        await store.upsert_history("u", "p1", NOW + 1)
        await store.upsert_history("other", "p2", NOW)
        return await store.query_history("u", "cur", limit=2)

    rows = run_with_store(db_url, body)

    assert [row.product_id for row in rows] == ["p1", "p3"]
    assert rows[0] == HistoryRow("p1", NOW + 1, "p1", "p1", "class-p1", NOW)


def test_history_for_users_and_purge(db_url):
    async def body(store):
        for pid in ("p1", "p2", "p3"):
            await store.upsert_class(pid, "mug", NOW, name=pid, picture=pid)
        await store.upsert_history("a", "p1", NOW - 30 * DAY_MS)
        await store.upsert_history("a", "p2", NOW - DAY_MS)
        await store.upsert_history("b", "p3", NOW)
        recent = await store.query_history_for_users(["a", "b"], since=NOW - 27 * DAY_MS)
        deleted = await store.delete_expired_history(NOW - 27 * DAY_MS)
        remaining = await store.query_history_for_users(["a", "b"], since=0)
        nobody = await store.query_history_for_users([], since=0)
        return recent, deleted, remaining, nobody

    recent, deleted, remaining, nobody = run_with_store(db_url, body)

    assert sorted(e.product_id for e in recent) == ["p2", "p3"]
    assert deleted == 1
    assert sorted(e.product_id for e in remaining) == ["p2", "p3"]
    assert nobody == []


def test_history_for_users_skips_uncatalogued_products(db_url):
    """Test that views of products without a class record are not returned."""

    async def body(store):
        await store.upsert_class("p1", "mug", NOW, name="p1", picture="p1")
        await store.upsert_history("a", "p1", NOW)
        await store.upsert_history("a", "ghost", NOW)
        return await store.query_history_for_users(["a"], since=0)

    assert [e.product_id for e in run_with_store(db_url, body)] == ["p1"]


def test_purge_drops_fingerprints_of_users_without_history(db_url):
    """Test that index rows of fully expired users are removed."""

    async def body(store):
        await store.upsert_history("stale", "p1", NOW - 30 * DAY_MS)
        await store.upsert_history("live", "p1", NOW - 30 * DAY_MS)
        await store.upsert_history("live", "p2", NOW)
        await store.replace_fingerprints("stale", [42])
        await store.replace_fingerprints("live", [42])
        deleted = await store.delete_expired_history(NOW - 27 * DAY_MS)
        return deleted, await store.query_users_sharing_fingerprint([42], "nobody")

    deleted, sharing = run_with_store(db_url, body)

    assert deleted == 2
    assert sharing == ["live"]


def test_fingerprints_accept_full_64_bit_values(db_url):
    """Test storage of unsigned hashes above the signed range."""
    big = 2**64 - 12345

    async def body(store):
        await store.replace_fingerprints("u1", [big, 7])
        await store.replace_fingerprints("u2", [big])
        return await store.query_users_sharing_fingerprint([big], "u2")

    assert run_with_store(db_url, body) == ["u1"]


def test_store_failure_raises_store_error(tmp_path):
    """Test that SQL errors surface as StoreError."""

    async def scenario():
        # Schema never created, so every query fails.
        store = SQLStore.from_url(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
        try:
            await store.query_class("p1")
        finally:
            await store.close()

    with pytest.raises(StoreError) as excinfo:
        asyncio.run(scenario())
    assert excinfo.value.status_code == 500
    assert excinfo.value.details["operation"] == "check for product classification"


# ===== Fake data =====


def test_generate_fake_catalog_and_views():
    catalog = generate_fake_catalog(num_products=30, seed=1)
    views = generate_fake_views(catalog, num_users=5, num_views=100, now_ms=NOW, seed=1)

    assert list(catalog.columns) == ["product_id", "name", "picture", "classification"]
    assert len(catalog) == 30
    assert set(views["product_id"]) <= set(catalog["product_id"])
    assert not views.duplicated(subset=["user_key", "product_id"]).any()
    assert views["timestamp"].max() <= NOW


def test_generate_fake_data_validates_inputs():
    with pytest.raises(ValueError):
        generate_fake_catalog(num_products=0)
    with pytest.raises(ValueError):
        generate_fake_views(generate_fake_catalog(5, seed=0), num_users=0)


def test_seed_store_writes_catalog_and_history(db_url):
    catalog = generate_fake_catalog(num_products=20, seed=2)
    views = generate_fake_views(catalog, num_users=3, num_views=30, now_ms=NOW, seed=2)
    label = catalog["classification"].iloc[0]

    async def body(store):
        await seed_store(store, catalog, views, now_ms=NOW)
        in_class = await store.query_by_class(label)
        history = await store.query_history_for_users(sorted(set(views["user_key"])), since=0)
        return in_class, history

    in_class, history = run_with_store(db_url, body)

    assert len(in_class) == int((catalog["classification"] == label).sum())
    assert len(history) == len(views)
