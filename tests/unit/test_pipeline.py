"""
Unit Tests - Warehouse Pipeline
"""
from typing import List

import polars as pl
import pytest

from dwh import schemas
from dwh.errors import ConformedLayerMissingError, PipelineError
from dwh.runs import ErrorPolicy, PipelineEvent, RunStatus, TableStatus
from dwh.schemas import Layer
from dwh.transformation.transformers import WarehousePipeline


@pytest.fixture
def events() -> List[PipelineEvent]:
    return []


@pytest.fixture
def pipeline(loaded_store, events, reference_date) -> WarehousePipeline:
    return WarehousePipeline(
        loaded_store,
        error_policy=ErrorPolicy.ABORT,
        event_sinks=[events.append],
        reference_date=reference_date,
        enable_quality_checks=True,
    )


class TestConformedRefresh:
    """Tests for refresh_conformed_layer"""

    async def test_all_tables_refreshed(self, pipeline, loaded_store):
        """Six conformed tables are written"""
        result = await pipeline.refresh_conformed_layer()

        assert result.status == RunStatus.SUCCEEDED
        assert list(result.tables) == list(schemas.SOURCE_TABLES)
        for table in schemas.SOURCE_TABLES:
            assert await loaded_store.has_table(Layer.CONFORMED, table)

    async def test_row_counts(self, pipeline):
        """Customer dedup is visible as dropped rows"""
        result = await pipeline.refresh_conformed_layer()
        customers = result.tables[schemas.CUSTOMERS]

        assert customers.rows_in == 5
        assert customers.rows_out == 3
        assert customers.rows_dropped == 2

    async def test_idempotent(self, pipeline, loaded_store):
        """A second run over the same raw layer writes the same tables"""
        await pipeline.refresh_conformed_layer()
        first = {t: await loaded_store.read_table(Layer.CONFORMED, t) for t in schemas.SOURCE_TABLES}

        await pipeline.refresh_conformed_layer()
        second = {t: await loaded_store.read_table(Layer.CONFORMED, t) for t in schemas.SOURCE_TABLES}

        for table in schemas.SOURCE_TABLES:
            assert first[table].equals(second[table]), table

    async def test_quality_attached(self, pipeline):
        """Validator results ride along on the table result"""
        result = await pipeline.refresh_conformed_layer()

        assert result.tables[schemas.CUSTOMERS].quality.total_checks > 0
        assert result.tables[schemas.CATEGORIES].quality is None

    async def test_quality_checks_disabled(self, loaded_store, reference_date):
        pipeline = WarehousePipeline(loaded_store, reference_date=reference_date, enable_quality_checks=False)

        result = await pipeline.refresh_conformed_layer()

        assert all(t.quality is None for t in result.tables.values())

    async def test_events(self, pipeline, events):
        """One event per table and a terminal run event"""
        result = await pipeline.refresh_conformed_layer()

        assert [e.event for e in events] == ["table_refreshed"] * 6 + ["run_succeeded"]
        assert {e.run_id for e in events} == {result.run_id}
        assert events[0].stage == "conformed"
        assert events[0].table == schemas.CUSTOMERS
        assert events[0].rows_out == 3

    async def test_abort_policy(self, parquet_store, raw_feeds, events, reference_date):
        """A failed table stops the remaining tables"""
        for table, df in raw_feeds.items():
            if table != schemas.SALES:
                await parquet_store.replace_table(Layer.RAW, table, df)

        pipeline = WarehousePipeline(
            parquet_store, error_policy=ErrorPolicy.ABORT, event_sinks=[events.append], reference_date=reference_date
        )
        result = await pipeline.refresh_conformed_layer()

        statuses = {name: t.status for name, t in result.tables.items()}
        assert result.status == RunStatus.FAILED
        assert result.error.code == "TABLE_NOT_FOUND"
        assert statuses[schemas.CUSTOMERS] == TableStatus.SUCCEEDED
        assert statuses[schemas.SALES] == TableStatus.FAILED
        assert statuses[schemas.LOCATIONS] == TableStatus.SKIPPED
        assert events[-1].event == "run_failed"

    async def test_continue_policy(self, parquet_store, raw_feeds, reference_date):
        """Independent tables still refresh after a failure"""
        for table, df in raw_feeds.items():
            if table != schemas.SALES:
                await parquet_store.replace_table(Layer.RAW, table, df)

        pipeline = WarehousePipeline(parquet_store, error_policy=ErrorPolicy.CONTINUE, reference_date=reference_date)
        result = await pipeline.refresh_conformed_layer()

        assert result.status == RunStatus.FAILED
        assert result.failed_tables == [schemas.SALES]
        assert await parquet_store.has_table(Layer.CONFORMED, schemas.CATEGORIES)

    async def test_unexpected_error_wrapped(self, pipeline, monkeypatch):
        """Exceptions from a transform become TRANSFORM_FAILED outcomes"""
        def broken(df):
            raise ZeroDivisionError("boom")

        monkeypatch.setattr(pipeline.product_conformer, "conform", broken)

        result = await pipeline.refresh_conformed_layer()

        error = result.tables[schemas.PRODUCTS].error
        assert error.code == "TRANSFORM_FAILED"
        assert error.table == schemas.PRODUCTS
        with pytest.raises(PipelineError):
            result.raise_for_status()


class TestDimensionalRefresh:
    """Tests for refresh_dimensional_layer"""

    async def test_requires_conformed_layer(self, pipeline, loaded_store, events):
        """Nothing is written before a conformed refresh"""
        result = await pipeline.refresh_dimensional_layer()

        assert result.status == RunStatus.FAILED
        assert isinstance(result.error, ConformedLayerMissingError)
        assert result.error.code == "CONFORMED_LAYER_MISSING"
        assert all(t.status == TableStatus.SKIPPED for t in result.tables.values())
        for table in schemas.DIMENSIONAL_TABLES:
            assert not await loaded_store.has_table(Layer.DIMENSIONAL, table)
        assert events[-1].error["code"] == "CONFORMED_LAYER_MISSING"

    async def test_builds_star_schema(self, pipeline, loaded_store):
        """Dimensions and fact are written with resolved keys"""
        await pipeline.refresh_conformed_layer()
        result = await pipeline.refresh_dimensional_layer()

        assert result.status == RunStatus.SUCCEEDED
        fact = await loaded_store.read_table(Layer.DIMENSIONAL, schemas.FACT_SALES)
        dim_products = await loaded_store.read_table(Layer.DIMENSIONAL, schemas.DIM_PRODUCTS)

        assert len(fact) == 5
        assert fact["customer_key"].to_list() == [1, 2, 3, 1, None]
        assert dim_products["end_date"].null_count() == len(dim_products)

    async def test_idempotent(self, pipeline, loaded_store):
        """Repeated runs produce identical dimensional tables"""
        await pipeline.refresh_conformed_layer()
        await pipeline.refresh_dimensional_layer()
        first = {t: await loaded_store.read_table(Layer.DIMENSIONAL, t) for t in schemas.DIMENSIONAL_TABLES}

        await pipeline.refresh_conformed_layer()
        await pipeline.refresh_dimensional_layer()
        second = {t: await loaded_store.read_table(Layer.DIMENSIONAL, t) for t in schemas.DIMENSIONAL_TABLES}

        for table in schemas.DIMENSIONAL_TABLES:
            assert first[table].equals(second[table]), table

    async def test_fact_skipped_when_dimension_fails(self, loaded_store, reference_date, monkeypatch):
        """The fact depends on both dimensions"""
        pipeline = WarehousePipeline(loaded_store, error_policy=ErrorPolicy.CONTINUE, reference_date=reference_date)
        await pipeline.refresh_conformed_layer()

        def broken(products, categories):
            raise ValueError("no categories")

        monkeypatch.setattr(pipeline.assembler, "build_dim_products", broken)
        result = await pipeline.refresh_dimensional_layer()

        assert result.tables[schemas.DIM_CUSTOMERS].status == TableStatus.SUCCEEDED
        assert result.tables[schemas.DIM_PRODUCTS].status == TableStatus.FAILED
        assert result.tables[schemas.FACT_SALES].status == TableStatus.SKIPPED
        assert not await loaded_store.has_table(Layer.DIMENSIONAL, schemas.FACT_SALES)


class TestRunAll:
    """Tests for run_all"""

    async def test_runs_both_stages(self, pipeline):
        results = await pipeline.run_all()

        assert [r.stage for r in results] == ["conformed", "dimensional"]
        assert all(r.succeeded for r in results)

    async def test_stops_after_conformed_failure(self, parquet_store, reference_date):
        """No dimensional run without a complete conformed layer"""
        pipeline = WarehousePipeline(parquet_store, reference_date=reference_date)

        results = await pipeline.run_all()

        assert len(results) == 1
        assert results[0].error.code == "TABLE_NOT_FOUND"


class TestDatabaseBackend:
    """End-to-end on the SQLite store"""

    async def test_full_refresh(self, database_store, raw_feeds, reference_date):
        for table, df in raw_feeds.items():
            await database_store.replace_table(Layer.RAW, table, df)

        pipeline = WarehousePipeline(database_store, reference_date=reference_date)
        results = await pipeline.run_all()

        assert all(r.succeeded for r in results)
        dim_customers = await database_store.read_table(Layer.DIMENSIONAL, schemas.DIM_CUSTOMERS)
        assert dim_customers.sort("customer_key")["customer_id"].to_list() == [7, 8, 9]
        assert isinstance(dim_customers, pl.DataFrame)
