"""
Unit Tests - Raw Loading, Sample Feeds and CLI
"""
from datetime import date
from pathlib import Path

import polars as pl
import pytest

from dwh import schemas
from dwh.cli import main
from dwh.config import get_settings
from dwh.data.generators import DataGenerator
from dwh.ingestion.batch_loader import SOURCE_FILES, RawLoader
from dwh.runs import ErrorPolicy, RunStatus, TableStatus
from dwh.schemas import Layer


@pytest.fixture
def source_dir(tmp_path) -> Path:
    """Small generated feed set"""
    path = tmp_path / "source"
    DataGenerator(path, seed=7).generate_all(n_customers=40, n_products=12, n_sales=120)
    return path


class TestDataGenerator:
    """Tests for DataGenerator"""

    def test_same_seed_same_feeds(self):
        """Generation is reproducible"""
        first = DataGenerator(seed=3).generate_feeds(n_customers=20, n_products=5, n_sales=30)
        second = DataGenerator(seed=3).generate_feeds(n_customers=20, n_products=5, n_sales=30)

        for table in schemas.SOURCE_TABLES:
            assert first[table].equals(second[table]), table

    def test_feeds_match_raw_schemas(self):
        feeds = DataGenerator(seed=3).generate_feeds(n_customers=20, n_products=5, n_sales=30)

        assert set(feeds) == set(schemas.SOURCE_TABLES)
        for table, df in feeds.items():
            assert df.schema == pl.Schema(schemas.RAW_SCHEMAS[table]), table

    def test_feeds_are_dirty(self):
        """The feeds carry the defects the conformed refresh repairs"""
        feeds = DataGenerator(seed=3).generate_feeds(n_customers=200, n_products=40, n_sales=500)

        customers = feeds[schemas.CUSTOMERS]
        assert customers["cst_id"].null_count() > 0
        assert customers["cst_id"].drop_nulls().is_duplicated().any()
        assert feeds[schemas.CUSTOMER_ATTRIBUTES]["cid"].str.starts_with("NAS").any()
        assert feeds[schemas.LOCATIONS]["cid"].str.contains("-").all()
        assert feeds[schemas.PRODUCTS]["prd_key"].is_duplicated().any()

    def test_files_written(self, source_dir):
        for relative in SOURCE_FILES.values():
            assert (source_dir / relative).is_file()


class TestRawLoader:
    """Tests for RawLoader"""

    async def test_load_all(self, parquet_store, source_dir):
        """Every feed lands in the raw layer with raw types"""
        result = await RawLoader(parquet_store).load_all(source_dir)

        assert result.status == RunStatus.SUCCEEDED
        for table in schemas.SOURCE_TABLES:
            df = await parquet_store.read_table(Layer.RAW, table)
            assert df.schema == pl.Schema(schemas.RAW_SCHEMAS[table])
            assert result.tables[table].rows_out == len(df)

    async def test_values_kept_verbatim(self, parquet_store, source_dir):
        """Padding and codes are not touched by the load"""
        await RawLoader(parquet_store).load_all(source_dir)
        attributes = await parquet_store.read_table(Layer.RAW, schemas.CUSTOMER_ATTRIBUTES)

        assert attributes["cid"].str.starts_with("NAS").any()

    async def test_missing_file(self, parquet_store, source_dir):
        """A missing feed fails its table; continue keeps loading the rest"""
        (source_dir / SOURCE_FILES[schemas.LOCATIONS]).unlink()

        result = await RawLoader(parquet_store, error_policy=ErrorPolicy.CONTINUE).load_all(source_dir)

        assert result.status == RunStatus.FAILED
        assert result.tables[schemas.LOCATIONS].error.code == "TABLE_NOT_FOUND"
        assert result.tables[schemas.CATEGORIES].status == TableStatus.SUCCEEDED

    async def test_wrong_column_count(self, parquet_store, source_dir):
        """A feed with the wrong layout is a schema mismatch"""
        path = source_dir / SOURCE_FILES[schemas.CATEGORIES]
        path.write_text("ID,CAT\nAC_HE,Accessories\n")

        result = await RawLoader(parquet_store, error_policy=ErrorPolicy.CONTINUE).load_all(source_dir)

        assert result.tables[schemas.CATEGORIES].error.code == "SCHEMA_MISMATCH"

    async def test_dated_feed_parsed(self, parquet_store, source_dir):
        """ISO date text in a feed becomes a date column"""
        path = source_dir / SOURCE_FILES[schemas.CUSTOMER_ATTRIBUTES]
        path.write_text("CID,BDATE,GEN\nNASAW00011000,1980-02-01,M\nAW00011001,,F\n")

        result = await RawLoader(parquet_store).load_all(source_dir)
        attributes = await parquet_store.read_table(Layer.RAW, schemas.CUSTOMER_ATTRIBUTES)

        assert result.tables[schemas.CUSTOMER_ATTRIBUTES].status == TableStatus.SUCCEEDED
        assert attributes.schema["bdate"] == pl.Date
        assert attributes["bdate"].to_list() == [date(1980, 2, 1), None]

    async def test_malformed_date_rejected(self, parquet_store, source_dir):
        """A date that is not ISO text fails the feed"""
        path = source_dir / SOURCE_FILES[schemas.CUSTOMER_ATTRIBUTES]
        path.write_text("CID,BDATE,GEN\nNASAW00011000,02/01/1980,M\n")

        result = await RawLoader(parquet_store, error_policy=ErrorPolicy.CONTINUE).load_all(source_dir)

        assert result.tables[schemas.CUSTOMER_ATTRIBUTES].error.code == "SCHEMA_MISMATCH"

    async def test_headers_ignored(self, parquet_store, source_dir):
        """Columns are taken by position, not by header name"""
        path = source_dir / SOURCE_FILES[schemas.CATEGORIES]
        path.write_text("ID,CAT,SUBCAT,MAINTENANCE\nAC_HE,Accessories,Helmets,No\n")

        await RawLoader(parquet_store).load_all(source_dir)
        categories = await parquet_store.read_table(Layer.RAW, schemas.CATEGORIES)

        assert categories.to_dicts() == [
            {"id": "AC_HE", "cat": "Accessories", "subcat": "Helmets", "maintenance": "No"}
        ]


class TestCli:
    """Tests for the dwh command"""

    @pytest.fixture(autouse=True)
    def lake(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DATA_LAKE_PATH", str(tmp_path / "lake"))
        monkeypatch.setenv("PIPELINE_STORE_BACKEND", "parquet")
        get_settings.cache_clear()
        yield tmp_path / "lake"
        get_settings.cache_clear()

    def test_end_to_end(self, tmp_path, lake):
        """Generate, load and refresh through the command line"""
        source = tmp_path / "feeds"

        assert main(["generate-sample", "--output-dir", str(source), "--customers", "30"]) == 0
        assert main(["load-raw", "--source-dir", str(source)]) == 0
        assert main(["run-all"]) == 0
        assert (lake / "dimensional" / "fact_sales.parquet").is_file()

    def test_failed_run_exit_code(self):
        """A refresh on an empty lake exits non-zero"""
        assert main(["refresh-dimensional"]) == 1
