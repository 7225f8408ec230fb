"""
Product Key Derivation and Effective Dating

Product rows arrive as versions of a composite natural key such as
``AC-HE-HL-U509``. The first five characters identify the category
(``AC_HE`` once hyphens become underscores, matching the ERP category ids)
and the remainder from position 7 is the key the sales feed uses
(``HL-U509``).

Versions of the same natural key are chained into validity intervals: each
version ends the day before the next one starts and the latest version is
left open-ended. An open end date is what marks the current version.
"""

from typing import Dict

import polars as pl
import structlog

from dwh.transformation.cleaners import decode
from dwh.transformation.ordering import OrderingSpec, ROW_INDEX

logger = structlog.get_logger(__name__)


PRODUCT_LINE_CODES: Dict[str, str] = {
    "M": "Mountain",
    "R": "Road",
    "S": "Other Sales",
    "T": "Touring",
}

CATEGORY_KEY_LENGTH = 5
SALES_KEY_OFFSET = 6  # zero-based start of the sales key

PRODUCT_VERSIONS = OrderingSpec(partition_by="prd_key", order_by="prd_start_dt", tie_break="prd_id")


def category_key(column: str = "prd_key") -> pl.Expr:
    """First five characters of the product key with hyphens as underscores"""
    return (
        pl.col(column)
        .str.strip_chars()
        .str.slice(0, CATEGORY_KEY_LENGTH)
        .str.replace_all("-", "_", literal=True)
    )


def sales_key(column: str = "prd_key") -> pl.Expr:
    """Product key from position 7 onwards"""
    return pl.col(column).str.strip_chars().str.slice(SALES_KEY_OFFSET)


class ProductConformer:
    """
    Derives join keys and validity intervals for the CRM product feed.

    Example:
        conformer = ProductConformer()
        products = conformer.conform(raw_products)
    """

    def derive_keys(self, df: pl.DataFrame) -> pl.DataFrame:
        """Add category/sales join keys, default cost, decode product line"""
        return df.with_columns([
            pl.col("prd_key").str.strip_chars().alias("prd_key"),
            category_key("prd_key").alias("cat_id"),
            sales_key("prd_key").alias("sls_prd_key"),
            pl.col("prd_cost").fill_null(0).alias("prd_cost"),
            decode("prd_line", PRODUCT_LINE_CODES),
        ])

    def apply_effective_dating(self, df: pl.DataFrame) -> pl.DataFrame:
        """
        Recompute ``prd_end_dt`` from the start date of the next version.

        Versions are grouped by ``prd_key`` and ordered by ``prd_start_dt``
        (equal start dates by ``prd_id``, then feed order). The last version of
        every key gets a null end date, so exactly one version is current. Any
        end date present in the feed is discarded. Of two versions sharing a
        start date, the earlier one ends the day before it starts and so
        covers no days.
        """
        ordered = PRODUCT_VERSIONS.sort(df)

        ordered = ordered.with_columns(
            pl.col("prd_start_dt")
            .shift(-1)
            .over(PRODUCT_VERSIONS.partition_by)
            .dt.offset_by("-1d")
            .alias("prd_end_dt")
        )

        return ordered.sort(["prd_id", ROW_INDEX], nulls_last=True).drop(ROW_INDEX)

    def conform(self, df: pl.DataFrame) -> pl.DataFrame:
        """Full product conformance: keys, defaults, decoding, validity intervals"""
        df = self.derive_keys(df)
        df = self.apply_effective_dating(df)

        logger.debug(
            "Product versions dated",
            rows=len(df),
            natural_keys=df["prd_key"].n_unique(),
        )

        return df.select([
            "prd_id",
            "prd_key",
            "cat_id",
            "sls_prd_key",
            "prd_nm",
            "prd_cost",
            "prd_line",
            "prd_start_dt",
            "prd_end_dt",
        ])
