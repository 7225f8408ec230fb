"""
Table Schemas

Column layouts for every table the warehouse reads or writes, grouped by
layer:

- raw: verbatim CRM/ERP feeds (source-native types, dates as 8-digit ints)
- conformed: cleansed, deduplicated and reconciled copies of the feeds
- dimensional: the customer/product dimensions and the sales fact

Both table stores and the raw loader build on these layouts, so a table has
the same columns and types whichever backend holds it.
"""

from enum import Enum
from typing import Dict, Optional

import polars as pl

from dwh.errors import SchemaMismatchError


class Layer(str, Enum):
    """Storage layers of the warehouse"""
    RAW = "raw"
    CONFORMED = "conformed"
    DIMENSIONAL = "dimensional"


# Table names shared by the raw and conformed layers
CUSTOMERS = "crm_cust_info"
PRODUCTS = "crm_prd_info"
SALES = "crm_sales_details"
CUSTOMER_ATTRIBUTES = "erp_cust_az12"
LOCATIONS = "erp_loc_a101"
CATEGORIES = "erp_px_cat_g1v2"

# Dimensional layer
DIM_CUSTOMERS = "dim_customers"
DIM_PRODUCTS = "dim_products"
FACT_SALES = "fact_sales"

SOURCE_TABLES = (CUSTOMERS, PRODUCTS, SALES, CUSTOMER_ATTRIBUTES, LOCATIONS, CATEGORIES)
DIMENSIONAL_TABLES = (DIM_CUSTOMERS, DIM_PRODUCTS, FACT_SALES)

# Placeholder for decoded codes that are unknown or missing
NOT_AVAILABLE = "n/a"

# Text form of date columns in CSV feeds
ISO_DATE_FORMAT = "%Y-%m-%d"

Schema = Dict[str, pl.DataType]


RAW_SCHEMAS: Dict[str, Schema] = {
    CUSTOMERS: {
        "cst_id": pl.Int64,
        "cst_key": pl.Utf8,
        "cst_firstname": pl.Utf8,
        "cst_lastname": pl.Utf8,
        "cst_marital_status": pl.Utf8,
        "cst_gndr": pl.Utf8,
        "cst_create_date": pl.Date,
    },
    PRODUCTS: {
        "prd_id": pl.Int64,
        "prd_key": pl.Utf8,
        "prd_nm": pl.Utf8,
        "prd_cost": pl.Int64,
        "prd_line": pl.Utf8,
        "prd_start_dt": pl.Date,
        "prd_end_dt": pl.Date,
    },
    SALES: {
        "sls_ord_num": pl.Utf8,
        "sls_prd_key": pl.Utf8,
        "sls_cust_id": pl.Int64,
        "sls_order_dt": pl.Int64,
        "sls_ship_dt": pl.Int64,
        "sls_due_dt": pl.Int64,
        "sls_sales": pl.Int64,
        "sls_quantity": pl.Int64,
        "sls_price": pl.Int64,
    },
    CUSTOMER_ATTRIBUTES: {
        "cid": pl.Utf8,
        "bdate": pl.Date,
        "gen": pl.Utf8,
    },
    LOCATIONS: {
        "cid": pl.Utf8,
        "cntry": pl.Utf8,
    },
    CATEGORIES: {
        "id": pl.Utf8,
        "cat": pl.Utf8,
        "subcat": pl.Utf8,
        "maintenance": pl.Utf8,
    },
}

CONFORMED_SCHEMAS: Dict[str, Schema] = {
    CUSTOMERS: RAW_SCHEMAS[CUSTOMERS],
    PRODUCTS: {
        "prd_id": pl.Int64,
        "prd_key": pl.Utf8,
        "cat_id": pl.Utf8,
        "sls_prd_key": pl.Utf8,
        "prd_nm": pl.Utf8,
        "prd_cost": pl.Int64,
        "prd_line": pl.Utf8,
        "prd_start_dt": pl.Date,
        "prd_end_dt": pl.Date,
    },
    SALES: {
        "sls_ord_num": pl.Utf8,
        "sls_prd_key": pl.Utf8,
        "sls_cust_id": pl.Int64,
        "sls_order_dt": pl.Date,
        "sls_ship_dt": pl.Date,
        "sls_due_dt": pl.Date,
        "sls_sales": pl.Int64,
        "sls_quantity": pl.Int64,
        "sls_price": pl.Int64,
    },
    CUSTOMER_ATTRIBUTES: RAW_SCHEMAS[CUSTOMER_ATTRIBUTES],
    LOCATIONS: RAW_SCHEMAS[LOCATIONS],
    CATEGORIES: RAW_SCHEMAS[CATEGORIES],
}

DIMENSIONAL_SCHEMAS: Dict[str, Schema] = {
    DIM_CUSTOMERS: {
        "customer_key": pl.Int64,
        "customer_id": pl.Int64,
        "customer_number": pl.Utf8,
        "first_name": pl.Utf8,
        "last_name": pl.Utf8,
        "country": pl.Utf8,
        "marital_status": pl.Utf8,
        "gender": pl.Utf8,
        "birth_date": pl.Date,
        "create_date": pl.Date,
    },
    DIM_PRODUCTS: {
        "product_key": pl.Int64,
        "product_id": pl.Int64,
        "product_number": pl.Utf8,
        "product_name": pl.Utf8,
        "category_id": pl.Utf8,
        "category": pl.Utf8,
        "subcategory": pl.Utf8,
        "maintenance": pl.Utf8,
        "cost": pl.Int64,
        "product_line": pl.Utf8,
        "start_date": pl.Date,
        "end_date": pl.Date,
    },
    FACT_SALES: {
        "order_number": pl.Utf8,
        "customer_key": pl.Int64,
        "product_key": pl.Int64,
        "order_date": pl.Date,
        "ship_date": pl.Date,
        "due_date": pl.Date,
        "sales": pl.Int64,
        "quantity": pl.Int64,
        "price": pl.Int64,
    },
}

LAYER_SCHEMAS: Dict[Layer, Dict[str, Schema]] = {
    Layer.RAW: RAW_SCHEMAS,
    Layer.CONFORMED: CONFORMED_SCHEMAS,
    Layer.DIMENSIONAL: DIMENSIONAL_SCHEMAS,
}


def get_schema(layer: Layer, table: str) -> Schema:
    """Look up the column layout of a table"""
    try:
        return LAYER_SCHEMAS[Layer(layer)][table]
    except KeyError:
        raise SchemaMismatchError(
            f"Unknown table for layer '{Layer(layer).value}'",
            table=table,
        ) from None


def empty_frame(layer: Layer, table: str) -> pl.DataFrame:
    """Zero-row frame with the table's columns and types"""
    return pl.DataFrame(schema=get_schema(layer, table))


def _cast(column: str, source: pl.DataType, target: pl.DataType) -> pl.Expr:
    # Text dates are parsed as ISO, a plain cast does not accept them
    if target == pl.Date and source == pl.Utf8:
        return pl.col(column).str.to_date(ISO_DATE_FORMAT, strict=True)
    return pl.col(column).cast(target, strict=True)


def enforce_schema(
    df: pl.DataFrame,
    schema: Schema,
    table: Optional[str] = None,
    stage: Optional[str] = None,
) -> pl.DataFrame:
    """
    Select and strictly cast the columns of a schema.

    Extra columns are dropped. Missing columns or values that cannot be cast
    raise SchemaMismatchError; nothing is coerced to null.
    """
    missing = [column for column in schema if column not in df.columns]
    if missing:
        raise SchemaMismatchError(
            f"Missing columns: {', '.join(missing)}",
            stage=stage,
            table=table,
        )

    try:
        return df.select([
            _cast(column, df.schema[column], dtype) for column, dtype in schema.items()
        ])
    except pl.exceptions.PolarsError as e:
        raise SchemaMismatchError(
            f"Column types do not match: {e}",
            stage=stage,
            table=table,
        ) from e
