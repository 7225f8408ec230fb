"""
Dimensional Assembly

Builds the star schema from conformed tables:

- dim_customers: CRM customers enriched with ERP birth date, gender and country
- dim_products: current product versions enriched with ERP categories
- fact_sales: sales lines keyed by the two dimensions' surrogate keys

Assembly is a pure transform. Surrogate keys are numbered 1..n over an
explicit sort order, so they are stable for a given set of conformed rows
but not across runs whose rows differ.
"""

from typing import List

import polars as pl
import structlog

from dwh.schemas import NOT_AVAILABLE

logger = structlog.get_logger(__name__)


CUSTOMER_KEY_ORDER: List[str] = ["cst_id"]
PRODUCT_KEY_ORDER: List[str] = ["prd_start_dt", "sls_prd_key"]


def assign_surrogate_key(df: pl.DataFrame, name: str, order_by: List[str]) -> pl.DataFrame:
    """Number rows from 1 after a stable sort on ``order_by``"""
    return (
        df.sort(order_by, nulls_last=False, maintain_order=True)
        .with_row_index(name, offset=1)
        .with_columns(pl.col(name).cast(pl.Int64))
    )


def resolve_gender() -> pl.Expr:
    """CRM gender unless it is n/a and the ERP gender says something better"""
    crm = pl.col("cst_gndr")
    erp = pl.col("gen")

    return (
        pl.when((crm == NOT_AVAILABLE) & erp.is_not_null() & (erp != NOT_AVAILABLE))
        .then(erp)
        .otherwise(crm)
        .alias("gender")
    )


class DimensionalAssembler:
    """
    Joins conformed tables into dimensions and the sales fact.

    Example:
        assembler = DimensionalAssembler()
        dim_customers = assembler.build_dim_customers(customers, attributes, locations)
    """

    def build_dim_customers(
        self,
        customers: pl.DataFrame,
        customer_attributes: pl.DataFrame,
        locations: pl.DataFrame,
    ) -> pl.DataFrame:
        """
        Customers left-joined to ERP attributes and locations on the customer number.

        The reference tables are reduced to one row per id first so that a
        duplicated ERP id cannot multiply customer rows.
        """
        attributes = customer_attributes.unique(subset=["cid"], keep="first", maintain_order=True)
        places = locations.unique(subset=["cid"], keep="first", maintain_order=True)

        df = (
            customers
            .join(attributes, left_on="cst_key", right_on="cid", how="left", maintain_order="left")
            .join(places, left_on="cst_key", right_on="cid", how="left", maintain_order="left")
        )

        df = assign_surrogate_key(df, "customer_key", CUSTOMER_KEY_ORDER)

        return df.select([
            "customer_key",
            pl.col("cst_id").alias("customer_id"),
            pl.col("cst_key").alias("customer_number"),
            pl.col("cst_firstname").alias("first_name"),
            pl.col("cst_lastname").alias("last_name"),
            pl.col("cntry").alias("country"),
            pl.col("cst_marital_status").alias("marital_status"),
            resolve_gender(),
            pl.col("bdate").alias("birth_date"),
            pl.col("cst_create_date").alias("create_date"),
        ])

    def build_dim_products(
        self,
        products: pl.DataFrame,
        categories: pl.DataFrame,
    ) -> pl.DataFrame:
        """Current (open-ended) product versions left-joined to categories"""
        current = products.filter(pl.col("prd_end_dt").is_null())
        category_lookup = categories.unique(subset=["id"], keep="first", maintain_order=True)

        df = current.join(category_lookup, left_on="cat_id", right_on="id", how="left", maintain_order="left")
        df = assign_surrogate_key(df, "product_key", PRODUCT_KEY_ORDER)

        return df.select([
            "product_key",
            pl.col("prd_id").alias("product_id"),
            pl.col("sls_prd_key").alias("product_number"),
            pl.col("prd_nm").alias("product_name"),
            pl.col("cat_id").alias("category_id"),
            pl.col("cat").alias("category"),
            pl.col("subcat").alias("subcategory"),
            "maintenance",
            pl.col("prd_cost").alias("cost"),
            pl.col("prd_line").alias("product_line"),
            pl.col("prd_start_dt").alias("start_date"),
            pl.col("prd_end_dt").alias("end_date"),
        ])

    def build_fact_sales(
        self,
        sales: pl.DataFrame,
        dim_customers: pl.DataFrame,
        dim_products: pl.DataFrame,
    ) -> pl.DataFrame:
        """
        Sales lines with customer/product surrogate keys.

        Every sales line is kept. A line whose customer or product has no
        dimension row gets a null key for that dimension.
        """
        customer_keys = dim_customers.select(["customer_id", "customer_key"]).unique(
            subset=["customer_id"], keep="first", maintain_order=True
        )
        product_keys = dim_products.select(["product_number", "product_key"]).unique(
            subset=["product_number"], keep="first", maintain_order=True
        )

        df = (
            sales
            .join(customer_keys, left_on="sls_cust_id", right_on="customer_id", how="left", maintain_order="left")
            .join(product_keys, left_on="sls_prd_key", right_on="product_number", how="left", maintain_order="left")
        )

        unresolved = df.select([
            pl.col("customer_key").is_null().sum().alias("customers"),
            pl.col("product_key").is_null().sum().alias("products"),
        ]).row(0, named=True)
        if unresolved["customers"] or unresolved["products"]:
            logger.info(
                "Sales lines with unresolved dimension keys",
                unresolved_customers=unresolved["customers"],
                unresolved_products=unresolved["products"],
            )

        return df.select([
            pl.col("sls_ord_num").alias("order_number"),
            "customer_key",
            "product_key",
            pl.col("sls_order_dt").alias("order_date"),
            pl.col("sls_ship_dt").alias("ship_date"),
            pl.col("sls_due_dt").alias("due_date"),
            pl.col("sls_sales").alias("sales"),
            pl.col("sls_quantity").alias("quantity"),
            pl.col("sls_price").alias("price"),
        ])
