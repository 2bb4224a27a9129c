"""Relational store for products, view history and the fingerprint index.

Built on SQLAlchemy's async Core API. SQLite (via aiosqlite) is the default
backend; upserts rely on SQLite's ``ON CONFLICT`` clause, which gives
last-write-wins semantics for concurrent requests.

Every operation raises ``StoreError`` on failure so callers on the request
path can propagate it and background tasks can log it.
"""

import logging
from typing import Any, Iterable, List, Optional, Sequence

from sqlalchemy import (
    BigInteger,
    Column,
    Integer,
    MetaData,
    String,
    Table,
    delete,
    insert,
    select,
)
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from simrec.api.exceptions import StoreError
from simrec.recommender.records import HistoryRow, Product, ProductClassRecord, ViewEvent

# Configure module logger
logger = logging.getLogger(__name__)

metadata = MetaData()

products = Table(
    "products",
    metadata,
    Column("productid", String, primary_key=True),
    Column("name", String, nullable=False),
    Column("picture", String, nullable=False),
    Column("classification", String, nullable=False, index=True),
    Column("lastupdated", BigInteger, nullable=False),
)

userhistory = Table(
    "userhistory",
    metadata,
    Column("cookie", String, primary_key=True),
    Column("productid", String, primary_key=True),
    Column("lastvisited", BigInteger, nullable=False, index=True),
)

fingerprints = Table(
    "fingerprints",
    metadata,
    Column("cookie", String, primary_key=True),
    Column("band", Integer, primary_key=True),
    Column("fingerprint", BigInteger, nullable=False, index=True),
)

_UINT64 = 1 << 64
_INT64_MAX = (1 << 63) - 1


def to_signed64(value: int) -> int:
    """Map an unsigned 64-bit value onto SQLite's signed INTEGER range."""
    return value - _UINT64 if value > _INT64_MAX else value


class SQLStore:
    """Async store over a SQLAlchemy engine."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    @classmethod
    def from_url(cls, database_url: str, **engine_kwargs: Any) -> "SQLStore":
        """Create a store for ``database_url``.

        In-memory SQLite URLs share one connection so every session sees the
        same database.
        """
        if ":memory:" in database_url or database_url.rstrip("/").endswith("sqlite+aiosqlite:"):
            engine_kwargs.setdefault("poolclass", StaticPool)
            engine_kwargs.setdefault("connect_args", {"check_same_thread": False})
        logger.info(f"Opening store at {database_url}")
        return cls(create_async_engine(database_url, **engine_kwargs))

    async def create_schema(self) -> None:
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(metadata.create_all)
        except SQLAlchemyError as e:
            raise StoreError("create schema", e) from e

    async def close(self) -> None:
        await self.engine.dispose()

    async def _fetch(self, operation: str, stmt: Any) -> Sequence[Any]:
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(stmt)
                return result.all()
        except SQLAlchemyError as e:
            logger.error(
                "Store read failed",
                extra={"operation": operation, "error": str(e), "error_type": type(e).__name__},
            )
            raise StoreError(operation, e) from e

    async def _write(self, operation: str, *statements: Any) -> int:
        """Run ``statements`` in one transaction; returns affected rows.

        Each statement is either a plain statement or a ``(statement,
        parameter_list)`` pair for executemany.
        """
        affected = 0
        try:
            async with self.engine.begin() as conn:
                for stmt in statements:
                    if isinstance(stmt, tuple):
                        result = await conn.execute(*stmt)
                    else:
                        result = await conn.execute(stmt)
                    if result.rowcount and result.rowcount > 0:
                        affected += result.rowcount
        except SQLAlchemyError as e:
            logger.error(
                "Store write failed",
                extra={"operation": operation, "error": str(e), "error_type": type(e).__name__},
            )
            raise StoreError(operation, e) from e
        return affected

    # ----- history -----

    async def query_history(
        self,
        user_key: str,
        exclude_product_id: str,
        limit: int,
    ) -> List[HistoryRow]:
        """Most recent views of ``user_key`` joined with product records."""
        stmt = (
            select(
                userhistory.c.productid,
                userhistory.c.lastvisited,
                products.c.name,
                products.c.picture,
                products.c.classification,
                products.c.lastupdated,
            )
            .select_from(userhistory.join(products, userhistory.c.productid == products.c.productid))
            .where(userhistory.c.cookie == user_key)
            .where(userhistory.c.productid != exclude_product_id)
            .order_by(userhistory.c.lastvisited.desc())
            .limit(limit)
        )
        rows = await self._fetch("get user history", stmt)
        return [HistoryRow(*row) for row in rows]

    async def upsert_history(self, user_key: str, product_id: str, timestamp: int) -> None:
        stmt = sqlite_insert(userhistory).values(
            cookie=user_key, productid=product_id, lastvisited=timestamp
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[userhistory.c.cookie, userhistory.c.productid],
            set_={"lastvisited": stmt.excluded.lastvisited},
        )
        await self._write("add product to history", stmt)

    async def query_history_for_users(
        self,
        user_keys: Sequence[str],
        since: int,
    ) -> List[ViewEvent]:
        """Views by any of ``user_keys`` at or after ``since``.

        Only views of catalogued products are returned.
        """
        if not user_keys:
            return []
        stmt = (
            select(userhistory.c.cookie, userhistory.c.productid, userhistory.c.lastvisited)
            .select_from(userhistory.join(products, userhistory.c.productid == products.c.productid))
            .where(
                userhistory.c.cookie.in_(list(user_keys)),
                userhistory.c.lastvisited >= since,
            )
        )
        rows = await self._fetch("get neighbour history", stmt)
        return [ViewEvent(*row) for row in rows]

    async def delete_expired_history(self, cutoff: int) -> int:
        """Delete views older than ``cutoff``; returns the number removed.

        Fingerprint rows of users left without any history are removed in
        the same transaction.
        """
        operation = "delete expired history"
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(
                    delete(userhistory).where(userhistory.c.lastvisited < cutoff)
                )
                await conn.execute(
                    delete(fingerprints).where(
                        fingerprints.c.cookie.not_in(select(userhistory.c.cookie).distinct())
                    )
                )
        except SQLAlchemyError as e:
            logger.error(
                "Store write failed",
                extra={"operation": operation, "error": str(e), "error_type": type(e).__name__},
            )
            raise StoreError(operation, e) from e
        return max(result.rowcount or 0, 0)

    # ----- products -----

    async def query_class(self, product_id: str) -> Optional[ProductClassRecord]:
        stmt = select(products.c.productid, products.c.classification, products.c.lastupdated).where(
            products.c.productid == product_id
        )
        rows = await self._fetch("check for product classification", stmt)
        return ProductClassRecord(*rows[0]) if rows else None

    async def upsert_class(
        self,
        product_id: str,
        classification: str,
        timestamp: int,
        name: str = "",
        picture: str = "",
    ) -> None:
        stmt = sqlite_insert(products).values(
            productid=product_id,
            name=name,
            picture=picture,
            classification=classification,
            lastupdated=timestamp,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[products.c.productid],
            set_={
                "name": stmt.excluded.name,
                "picture": stmt.excluded.picture,
                "classification": stmt.excluded.classification,
                "lastupdated": stmt.excluded.lastupdated,
            },
        )
        await self._write("register classification", stmt)

    async def query_by_class(
        self,
        classification: str,
        exclude_product_id: Optional[str] = None,
    ) -> List[Product]:
        stmt = select(products.c.productid, products.c.name, products.c.picture).where(
            products.c.classification == classification
        )
        if exclude_product_id is not None:
            stmt = stmt.where(products.c.productid != exclude_product_id)
        rows = await self._fetch("find similar products", stmt)
        return [Product(*row) for row in rows]

    async def query_product(self, product_id: str) -> Optional[Product]:
        stmt = select(products.c.productid, products.c.name, products.c.picture).where(
            products.c.productid == product_id
        )
        rows = await self._fetch("look up product", stmt)
        return Product(*rows[0]) if rows else None

    # ----- fingerprint index -----

    async def replace_fingerprints(self, user_key: str, values: Iterable[int]) -> None:
        """Swap the user's band rows for ``values`` in one transaction."""
        rows = [
            {"cookie": user_key, "band": band, "fingerprint": to_signed64(value)}
            for band, value in enumerate(values)
        ]
        statements: List[Any] = [delete(fingerprints).where(fingerprints.c.cookie == user_key)]
        if rows:
            statements.append((insert(fingerprints), rows))
        await self._write("replace fingerprints", *statements)

    async def query_users_sharing_fingerprint(
        self,
        values: Iterable[int],
        exclude_user_key: str,
    ) -> List[str]:
        """One user key per stored band matching any of ``values``."""
        signed = sorted({to_signed64(value) for value in values})
        if not signed:
            return []
        stmt = select(fingerprints.c.cookie).where(
            fingerprints.c.fingerprint.in_(signed),
            fingerprints.c.cookie != exclude_user_key,
        )
        rows = await self._fetch("find neighbour users", stmt)
        return [row[0] for row in rows]
