"""
Test Suite Configuration
"""
from datetime import date
from typing import AsyncGenerator, Dict

import polars as pl
import pytest

from dwh import schemas
from dwh.config import Settings
from dwh.schemas import Layer
from dwh.storage import DatabaseTableStore, ParquetTableStore

REFERENCE_DATE = date(2024, 6, 30)


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings"""
    return Settings(app_env="testing")


@pytest.fixture
def reference_date() -> date:
    """Processing date for the birth date guard"""
    return REFERENCE_DATE


@pytest.fixture
def raw_customers() -> pl.DataFrame:
    """CRM customers with a second version of customer 7 and a null id"""
    return pl.DataFrame({
        "cst_id": [7, 8, 7, 9, None],
        "cst_key": ["AW00000007", "AW00000008", "AW00000007", "AW00000009", "SF566"],
        "cst_firstname": [" Ann ", "Bob", "Anne", " Cara", None],
        "cst_lastname": ["Lee", " Stone ", "Lee", "Diaz", None],
        "cst_marital_status": ["S", " m", "M", None, None],
        "cst_gndr": ["F", "m", "f", "X", None],
        "cst_create_date": [date(2021, 1, 1), date(2020, 5, 5), date(2022, 6, 1), date(2019, 3, 3), None],
    }, schema=schemas.RAW_SCHEMAS[schemas.CUSTOMERS])


@pytest.fixture
def raw_customer_attributes() -> pl.DataFrame:
    return pl.DataFrame({
        "cid": ["NASAW00000007", "AW00000008", "NASAW00000009"],
        "bdate": [date(1980, 2, 1), date(2030, 1, 1), date(1975, 7, 7)],
        "gen": ["Female", "M", " "],
    }, schema=schemas.RAW_SCHEMAS[schemas.CUSTOMER_ATTRIBUTES])


@pytest.fixture
def raw_locations() -> pl.DataFrame:
    return pl.DataFrame({
        "cid": ["AW-00000007", "AW-00000008", "AW-00000009"],
        "cntry": ["US", " Australia ", None],
    }, schema=schemas.RAW_SCHEMAS[schemas.LOCATIONS])


@pytest.fixture
def raw_categories() -> pl.DataFrame:
    return pl.DataFrame({
        "id": ["AC_HE", "BI_RB"],
        "cat": ["Accessories", "Bikes"],
        "subcat": ["Helmets", "Road Bikes"],
        "maintenance": ["No", "Yes"],
    }, schema=schemas.RAW_SCHEMAS[schemas.CATEGORIES])


@pytest.fixture
def raw_products() -> pl.DataFrame:
    """Three versions of the helmet (out of order) and one road bike"""
    return pl.DataFrame({
        "prd_id": [210, 211, 212, 313],
        "prd_key": ["AC-HE-HL-U509", "AC-HE-HL-U509 ", "AC-HE-HL-U509", "BI-RB-BK-R93R-62"],
        "prd_nm": ["Sport Helmet", "Sport Helmet", "Sport Helmet", "Road-150 Red"],
        "prd_cost": [12, None, 13, 2171],
        "prd_line": ["S", "s ", None, "R"],
        "prd_start_dt": [date(2011, 7, 1), date(2013, 7, 1), date(2012, 7, 1), date(2011, 7, 1)],
        "prd_end_dt": [date(2007, 12, 28), None, date(2008, 12, 27), None],
    }, schema=schemas.RAW_SCHEMAS[schemas.PRODUCTS])


@pytest.fixture
def raw_sales() -> pl.DataFrame:
    """Sales lines exercising every repair rule"""
    return pl.DataFrame({
        "sls_ord_num": ["SO1", "SO2", "SO3", "SO4", "SO5"],
        "sls_prd_key": ["HL-U509", "HL-U509", "BK-R93R-62", "HL-U509", "XX-0000"],
        "sls_cust_id": [7, 8, 9, 7, 99],
        "sls_order_dt": [20101229, 0, 2010122, 20231345, 20110101],
        "sls_ship_dt": [20110105, 20110105, 20110105, 20110105, 20110108],
        "sls_due_dt": [20110110, 20110110, 20110110, 20110110, 20110113],
        "sls_sales": [0, 50, 2171, None, 40],
        "sls_quantity": [3, 2, 1, 0, 4],
        "sls_price": [10, -25, None, 5, 10],
    }, schema=schemas.RAW_SCHEMAS[schemas.SALES])


@pytest.fixture
def raw_feeds(
    raw_customers,
    raw_products,
    raw_sales,
    raw_customer_attributes,
    raw_locations,
    raw_categories,
) -> Dict[str, pl.DataFrame]:
    """All six raw tables keyed by name"""
    return {
        schemas.CUSTOMERS: raw_customers,
        schemas.PRODUCTS: raw_products,
        schemas.SALES: raw_sales,
        schemas.CUSTOMER_ATTRIBUTES: raw_customer_attributes,
        schemas.LOCATIONS: raw_locations,
        schemas.CATEGORIES: raw_categories,
    }


@pytest.fixture
def parquet_store(tmp_path) -> ParquetTableStore:
    """Parquet table store rooted in a temporary directory"""
    return ParquetTableStore(tmp_path / "lake")


@pytest.fixture
async def database_store(tmp_path) -> AsyncGenerator[DatabaseTableStore, None]:
    """File-backed SQLite table store"""
    store = await DatabaseTableStore.connect(f"sqlite+aiosqlite:///{tmp_path / 'dwh.db'}")
    yield store
    await store.close()


@pytest.fixture
async def loaded_store(parquet_store, raw_feeds) -> ParquetTableStore:
    """Parquet store with all six raw tables written"""
    for table, df in raw_feeds.items():
        await parquet_store.replace_table(Layer.RAW, table, df)
    return parquet_store
