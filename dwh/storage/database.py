"""
Database Table Store

Keeps the warehouse layers in a relational database through an async
SQLAlchemy engine. Replacing a table deletes and re-inserts its rows inside
one transaction, so concurrent readers keep seeing the previous snapshot
until the commit. Rows are stored with their position in the written frame
and read back in that order.
"""

from typing import Optional

import polars as pl
import structlog
from sqlalchemy import inspect, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from dwh.database.connection import check_database_health, create_engine
from dwh.database.models import ROW_POSITION, get_table, physical_name
from dwh.errors import StoreUnavailableError, TableNotFoundError
from dwh.schemas import Layer, enforce_schema, get_schema
from dwh.storage.base import TableStore

logger = structlog.get_logger(__name__)


class DatabaseTableStore(TableStore):
    """
    Table store backed by PostgreSQL (asyncpg) or SQLite (aiosqlite).

    Example:
        store = await DatabaseTableStore.connect("sqlite+aiosqlite:///dwh.db")
        await store.replace_table(Layer.DIMENSIONAL, "dim_customers", df)
        await store.close()
    """

    def __init__(self, engine: AsyncEngine, owns_engine: bool = False):
        self.engine = engine
        self._owns_engine = owns_engine

    @classmethod
    async def connect(cls, url: Optional[str] = None) -> "DatabaseTableStore":
        """Create an engine and verify the database answers"""
        engine = create_engine(url)
        health = await check_database_health(engine)
        if health["status"] != "healthy":
            await engine.dispose()
            raise StoreUnavailableError(f"Database unavailable: {health.get('error')}")

        logger.info("Database table store connected", latency_ms=health["latency_ms"])
        return cls(engine, owns_engine=True)

    async def has_table(self, layer: Layer, name: str) -> bool:
        table_name = physical_name(layer, name)
        try:
            async with self.engine.connect() as conn:
                return await conn.run_sync(
                    lambda sync_conn: inspect(sync_conn).has_table(table_name)
                )
        except SQLAlchemyError as e:
            raise StoreUnavailableError(
                f"Could not inspect {table_name}: {e}",
                stage=Layer(layer).value,
                table=name,
            ) from e

    async def read_table(self, layer: Layer, name: str) -> pl.DataFrame:
        layer = Layer(layer)
        if not await self.has_table(layer, name):
            raise TableNotFoundError(
                f"No table {physical_name(layer, name)}",
                stage=layer.value,
                table=name,
            )

        schema = get_schema(layer, name)
        table = get_table(layer, name)

        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(
                    select(*[table.c[column] for column in schema]).order_by(table.c[ROW_POSITION])
                )
                rows = [dict(row) for row in result.mappings().all()]
        except SQLAlchemyError as e:
            raise StoreUnavailableError(
                f"Could not read {table.name}: {e}",
                stage=layer.value,
                table=name,
            ) from e

        return enforce_schema(pl.DataFrame(rows, schema=schema), schema, table=name, stage=layer.value)

    async def _swap_table(self, layer: Layer, name: str, df: pl.DataFrame) -> None:
        table = get_table(layer, name)
        rows = df.with_row_index(ROW_POSITION).to_dicts()

        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(table.create, checkfirst=True)
                await conn.execute(table.delete())
                if rows:
                    await conn.execute(table.insert(), rows)
        except SQLAlchemyError as e:
            raise StoreUnavailableError(
                f"Could not replace {table.name}: {e}",
                stage=Layer(layer).value,
                table=name,
            ) from e

        logger.debug("Table replaced", table=table.name, rows=len(rows))

    async def close(self) -> None:
        if self._owns_engine:
            await self.engine.dispose()
