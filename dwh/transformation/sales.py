"""
Sales Reconciliation

Repairs the CRM sales lines row by row:

- order/ship/due dates arrive as integers (``20101229``); anything that is not
  exactly eight digits, or not a real calendar date, becomes null
- the sales amount is recomputed as ``quantity * abs(price)`` whenever the
  recorded value is missing, non-positive or inconsistent
- a missing or non-positive price is back-derived as ``sales / quantity``;
  a zero quantity yields a null price

Quantity is trusted as recorded.
"""

from typing import Tuple

import polars as pl
import structlog

logger = structlog.get_logger(__name__)


DATE_COLUMNS: Tuple[str, ...] = ("sls_order_dt", "sls_ship_dt", "sls_due_dt")
INT_DATE_FORMAT = "%Y%m%d"
INT_DATE_DIGITS = 8


def parse_int_date(column: str) -> pl.Expr:
    """YYYYMMDD integer to a calendar date; null unless it has exactly 8 digits"""
    digits = pl.col(column).cast(pl.Utf8)
    return (
        pl.when(digits.str.len_chars() == INT_DATE_DIGITS)
        .then(digits.str.to_date(INT_DATE_FORMAT, strict=False))
        .otherwise(None)
        .alias(column)
    )


def repaired_sales() -> pl.Expr:
    """Recorded sales unless null, non-positive or != quantity * abs(price)"""
    sales = pl.col("sls_sales")
    expected = pl.col("sls_quantity") * pl.col("sls_price").abs()

    return (
        pl.when(sales.is_null() | (sales <= 0) | (sales != expected))
        .then(expected)
        .otherwise(sales)
        .alias("sls_sales")
    )


def repaired_price() -> pl.Expr:
    """
    Recorded price unless null or non-positive, else recorded sales / quantity.

    The division truncates to a whole amount like the integer source columns.
    A zero (or null) quantity gives a null price rather than a division fault.
    """
    price = pl.col("sls_price")
    quantity = pl.col("sls_quantity")

    derived = (
        pl.when(quantity.is_null() | (quantity == 0))
        .then(None)
        .otherwise((pl.col("sls_sales") / quantity).cast(pl.Int64))
    )

    return (
        pl.when(price.is_null() | (price <= 0))
        .then(derived)
        .otherwise(price)
        .alias("sls_price")
    )


class SalesReconciler:
    """
    Date and measure repair for the CRM sales feed.

    Example:
        sales = SalesReconciler().reconcile(raw_sales)
    """

    def repair_dates(self, df: pl.DataFrame) -> pl.DataFrame:
        """Convert the integer date columns, nulling malformed values"""
        return df.with_columns([
            parse_int_date(column) for column in DATE_COLUMNS if column in df.columns
        ])

    def repair_measures(self, df: pl.DataFrame) -> pl.DataFrame:
        """
        Repair sales and price in one pass.

        Both expressions read the recorded values, so the price fallback
        divides the sales amount as it arrived, not the recomputed one.
        """
        return df.with_columns([
            repaired_sales(),
            repaired_price(),
        ])

    def reconcile(self, df: pl.DataFrame) -> pl.DataFrame:
        """Full reconciliation of the sales feed"""
        malformed_dates = {
            column: int(
                df.select(
                    (pl.col(column).is_not_null() & parse_int_date(column).is_null()).sum()
                ).item()
            )
            for column in DATE_COLUMNS
        }

        df = self.repair_dates(df)
        df = self.repair_measures(df)

        if any(malformed_dates.values()):
            logger.info("Malformed sales dates nulled", **malformed_dates)

        return df.select([
            "sls_ord_num",
            "sls_prd_key",
            "sls_cust_id",
            *DATE_COLUMNS,
            "sls_sales",
            "sls_quantity",
            "sls_price",
        ])
