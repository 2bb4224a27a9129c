"""Generate a fake catalogue and browsing history for development.

Creates products spread over a handful of classes plus view events by
simulated users, and optionally writes both into a SimRec store so the API
has something to recommend from.

Example:
    Seed the default SQLite database:
        $ python scripts/generate_fake_data.py --database-url sqlite+aiosqlite:///simrec.db

    Or import and use programmatically:
        from scripts.generate_fake_data import generate_fake_catalog
        catalog = generate_fake_catalog(num_products=200)
"""

import argparse
import asyncio
import random
import sys
import time
from pathlib import Path
from typing import Optional, Sequence

import pandas as pd

# Add project root to Python path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from simrec.recommender.config import DAY_MS
from simrec.recommender.store import SQLStore

# Default configuration constants
DEFAULT_NUM_USERS = 50
DEFAULT_NUM_PRODUCTS = 100
DEFAULT_NUM_VIEWS = 1000
DEFAULT_DAYS_BACK = 30
DEFAULT_CLASSES = (
    "n02123045",  # tabby cat
    "n02099601",  # golden retriever
    "n03063599",  # coffee mug
    "n04254680",  # soccer ball
    "n03642806",  # laptop
)


def generate_fake_catalog(
    num_products: int = DEFAULT_NUM_PRODUCTS,
    classes: Sequence[str] = DEFAULT_CLASSES,
    seed: Optional[int] = None,
) -> pd.DataFrame:
    """Generate a synthetic product catalogue.

    Args:
        num_products: Number of products. Must be positive.
        classes: Class labels products are assigned to.
        seed: Random seed for reproducibility.

    Returns:
        DataFrame with columns ``product_id``, ``name``, ``picture`` and
        ``classification``.

    Raises:
        ValueError: If num_products is not positive or classes is empty.
    """
    if num_products <= 0:
        raise ValueError("num_products must be positive")
    if not classes:
        raise ValueError("classes must not be empty")

    rng = random.Random(seed)
    rows = []
    for idx in range(1, num_products + 1):
        rows.append({
            "product_id": str(idx),
            "name": f"Product {idx}",
            "picture": f"https://picsum.photos/seed/{idx}/224/224",
            "classification": rng.choice(list(classes)),
        })
    return pd.DataFrame(rows)


def generate_fake_views(
    catalog: pd.DataFrame,
    num_users: int = DEFAULT_NUM_USERS,
    num_views: int = DEFAULT_NUM_VIEWS,
    days_back: int = DEFAULT_DAYS_BACK,
    now_ms: Optional[int] = None,
    seed: Optional[int] = None,
) -> pd.DataFrame:
    """Generate view events over ``catalog``.

    Each user favours two classes, so users with the same favourites end up
    with overlapping histories. Repeated (user, product) pairs keep their
    latest timestamp, matching the store's upsert.

    Returns:
        DataFrame with columns ``user_key``, ``product_id`` and ``timestamp``
        (milliseconds), sorted by timestamp.

    Raises:
        ValueError: If num_users, num_views or days_back is not positive, or
            the catalogue is empty.
    """
    if num_users <= 0 or num_views <= 0 or days_back <= 0:
        raise ValueError("num_users, num_views and days_back must be positive")
    if catalog.empty:
        raise ValueError("catalog must not be empty")

    rng = random.Random(seed)
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    by_class = catalog.groupby("classification")["product_id"].apply(list).to_dict()
    labels = sorted(by_class)

    favourites = {
        f"user-{idx}": rng.sample(labels, k=min(2, len(labels)))
        for idx in range(1, num_users + 1)
    }

    views = []
    for _ in range(num_views):
        user_key = rng.choice(list(favourites))
        label = rng.choice(favourites[user_key]) if rng.random() < 0.8 else rng.choice(labels)
        views.append({
            "user_key": user_key,
            "product_id": rng.choice(by_class[label]),
            "timestamp": now_ms - rng.randrange(days_back * DAY_MS),
        })

    df = pd.DataFrame(views)
    df = (
        df.sort_values("timestamp")
        .drop_duplicates(subset=["user_key", "product_id"], keep="last")
        .reset_index(drop=True)
    )
    return df


async def seed_store(
    store: SQLStore,
    catalog: pd.DataFrame,
    views: pd.DataFrame,
    now_ms: Optional[int] = None,
) -> None:
    """Write ``catalog`` and ``views`` into ``store``."""
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    await store.create_schema()

    for row in catalog.itertuples(index=False):
        await store.upsert_class(
            row.product_id, row.classification, now_ms, name=row.name, picture=row.picture
        )
    for row in views.itertuples(index=False):
        await store.upsert_history(row.user_key, row.product_id, int(row.timestamp))


async def _seed(database_url: str, catalog: pd.DataFrame, views: pd.DataFrame) -> None:
    store = SQLStore.from_url(database_url)
    try:
        await seed_store(store, catalog, views)
    finally:
        await store.close()


def main() -> None:
    """Generate data, optionally seed a store, and print a summary."""
    parser = argparse.ArgumentParser(description="Generate fake SimRec data.")
    parser.add_argument("--num-users", type=int, default=DEFAULT_NUM_USERS)
    parser.add_argument("--num-products", type=int, default=DEFAULT_NUM_PRODUCTS)
    parser.add_argument("--num-views", type=int, default=DEFAULT_NUM_VIEWS)
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument(
        "--database-url",
        type=str,
        default=None,
        help="Store to seed, e.g. sqlite+aiosqlite:///simrec.db",
    )
    parser.add_argument(
        "--output-dir",
        type=str,
        default=str(project_root / "data"),
        help="Directory for catalog.csv and views.csv",
    )
    args = parser.parse_args()

    print(f"Generating {args.num_products} products and {args.num_views} views...")
    try:
        catalog = generate_fake_catalog(args.num_products, seed=args.seed)
        views = generate_fake_views(
            catalog, num_users=args.num_users, num_views=args.num_views, seed=args.seed
        )
    except ValueError as e:
        print(f"Error generating data: {e}")
        sys.exit(1)

    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    catalog.to_csv(output_dir / "catalog.csv", index=False)
    views.to_csv(output_dir / "views.csv", index=False)
    print(f"Saved CSV files to: {output_dir}")

    if args.database_url:
        asyncio.run(_seed(args.database_url, catalog, views))
        print(f"Seeded store at {args.database_url}")

    print(f"\nData summary:")
    print(f"  Products: {len(catalog)} in {catalog['classification'].nunique()} classes")
    print(f"  Views: {len(views)} by {views['user_key'].nunique()} users")


if __name__ == "__main__":
    main()
