"""
Database Models

SQLAlchemy tables for every warehouse table, derived from the column layouts
in ``dwh.schemas`` so the database and parquet backends cannot drift apart.

Physical names are ``<layer>_<table>``:

- raw_crm_cust_info, raw_crm_prd_info, ... (verbatim feeds)
- conformed_crm_cust_info, ... (cleansed copies)
- dimensional_dim_customers, dimensional_dim_products, dimensional_fact_sales

Raw and conformed tables carry no primary key; the raw feeds contain
duplicates by nature and the dimensional surrogate keys are run-scoped.
Every table has a trailing ``_row_position`` column holding the row's place
in the written frame, so reads return rows in the order they were written.
"""

from typing import Dict, Type

import polars as pl
from sqlalchemy import BigInteger, Column, Date, Float, MetaData, String, Table
from sqlalchemy.types import TypeEngine

from dwh.schemas import Layer, get_schema

metadata = MetaData()

ROW_POSITION = "_row_position"

SQL_TYPES: Dict[object, Type[TypeEngine]] = {
    pl.Int64: BigInteger,
    pl.Utf8: String,
    pl.Date: Date,
    pl.Float64: Float,
}


def physical_name(layer: Layer, name: str) -> str:
    return f"{Layer(layer).value}_{name}"


def get_table(layer: Layer, name: str) -> Table:
    """SQLAlchemy table for a warehouse table, registered on ``metadata`` once"""
    table_name = physical_name(layer, name)
    if table_name in metadata.tables:
        return metadata.tables[table_name]

    columns = [
        Column(column, SQL_TYPES[dtype](), nullable=True)
        for column, dtype in get_schema(layer, name).items()
    ]
    columns.append(Column(ROW_POSITION, BigInteger, nullable=False))
    return Table(table_name, metadata, *columns)
