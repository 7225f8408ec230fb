"""
Data Cleaning Module

Cleansing and conformance rules for the CRM and ERP feeds.
Handles:
- Whitespace trimming
- Code decoding (marital status, gender, country)
- Null handling
- Deduplication by recency
- Identifier normalization for the ERP reference tables
"""

from datetime import date
from typing import Dict, Iterable, List, Optional

import polars as pl
import structlog

from dwh.schemas import NOT_AVAILABLE
from dwh.transformation.ordering import OrderingSpec

logger = structlog.get_logger(__name__)


MARITAL_STATUS_CODES: Dict[str, str] = {
    "M": "Married",
    "S": "Single",
}

GENDER_CODES: Dict[str, str] = {
    "M": "Male",
    "F": "Female",
}

# The ERP feed mixes single-letter codes with spelled-out values
ERP_GENDER_CODES: Dict[str, str] = {
    **GENDER_CODES,
    "MALE": "Male",
    "FEMALE": "Female",
}

COUNTRY_SYNONYMS: Dict[str, List[str]] = {
    "United States": ["USA", "US", "UNITED STATES"],
    "Germany": ["DE", "GERMANY"],
}

CUSTOMER_RECENCY = OrderingSpec(
    partition_by="cst_id",
    order_by="cst_create_date",
    descending=True,
)


def decode(column: str, codes: Dict[str, str], default: str = NOT_AVAILABLE) -> pl.Expr:
    """
    Decode a code column through a lookup table.

    Matching is case-insensitive on the trimmed value. Nulls and codes outside
    the table map to ``default``.
    """
    key = pl.col(column).str.strip_chars().str.to_uppercase()

    expr = None
    for code, label in codes.items():
        if expr is None:
            expr = pl.when(key == code).then(pl.lit(label))
        else:
            expr = expr.when(key == code).then(pl.lit(label))

    if expr is None:
        return pl.lit(default).alias(column)
    return expr.otherwise(pl.lit(default)).alias(column)


def normalize_country(column: str = "cntry") -> pl.Expr:
    """Map country synonyms to one spelling, blanks to n/a, anything else trimmed"""
    trimmed = pl.col(column).str.strip_chars()
    key = trimmed.str.to_uppercase()

    expr = pl.when(trimmed.is_null() | (trimmed == "")).then(pl.lit(NOT_AVAILABLE))
    for country, synonyms in COUNTRY_SYNONYMS.items():
        expr = expr.when(key.is_in(synonyms)).then(pl.lit(country))

    return expr.otherwise(trimmed).alias(column)


class DataCleaner:
    """
    Cleansing rules for the customer feed and the ERP reference feeds.

    Example:
        cleaner = DataCleaner()
        customers = cleaner.clean_customers(raw_customers)
    """

    def __init__(
        self,
        reference_date: Optional[date] = None,
        customer_attr_id_prefix: str = "NAS",
    ):
        self._reference_date = reference_date
        self.customer_attr_id_prefix = customer_attr_id_prefix

    @property
    def reference_date(self) -> date:
        """Processing date for the birth date guard; today unless fixed"""
        return self._reference_date or date.today()

    def _trim_strings(self, df: pl.DataFrame, columns: Optional[Iterable[str]] = None) -> pl.DataFrame:
        """Trim whitespace from string columns"""
        string_cols = columns or [
            col for col, dtype in zip(df.columns, df.dtypes)
            if dtype == pl.Utf8
        ]

        for col in string_cols:
            if col in df.columns:
                df = df.with_columns(
                    pl.col(col).str.strip_chars().alias(col)
                )

        return df

    def clean_customers(self, df: pl.DataFrame) -> pl.DataFrame:
        """
        Conform the CRM customer feed.

        Keeps exactly one row per non-null ``cst_id``: the one with the latest
        ``cst_create_date``. Equal dates keep the row that came first in the
        feed.
        """
        rows_in = len(df)
        df = df.filter(pl.col("cst_id").is_not_null())
        df = CUSTOMER_RECENCY.first_per_partition(df)

        df = self._trim_strings(df)
        df = df.with_columns([
            decode("cst_marital_status", MARITAL_STATUS_CODES),
            decode("cst_gndr", GENDER_CODES),
        ])

        logger.debug(
            "Customers deduplicated",
            rows_in=rows_in,
            rows_out=len(df),
        )

        return df.sort("cst_id").select([
            "cst_id",
            "cst_key",
            "cst_firstname",
            "cst_lastname",
            "cst_marital_status",
            "cst_gndr",
            "cst_create_date",
        ])

    def clean_customer_attributes(self, df: pl.DataFrame) -> pl.DataFrame:
        """Strip the id prefix, null future birth dates, decode gender"""
        df = self._trim_strings(df)
        prefix = self.customer_attr_id_prefix

        if prefix:
            df = df.with_columns(
                pl.when(pl.col("cid").str.starts_with(prefix))
                .then(pl.col("cid").str.slice(len(prefix)))
                .otherwise(pl.col("cid"))
                .alias("cid")
            )

        return df.with_columns([
            pl.when(pl.col("bdate") > pl.lit(self.reference_date))
            .then(None)
            .otherwise(pl.col("bdate"))
            .alias("bdate"),
            decode("gen", ERP_GENDER_CODES),
        ]).select(["cid", "bdate", "gen"])

    def clean_locations(self, df: pl.DataFrame) -> pl.DataFrame:
        """Remove hyphens from ids and normalize country names"""
        return df.with_columns([
            pl.col("cid").str.replace_all("-", "", literal=True).alias("cid"),
            normalize_country("cntry"),
        ]).select(["cid", "cntry"])

    def clean_categories(self, df: pl.DataFrame) -> pl.DataFrame:
        """Category reference data is copied as-is"""
        return df.select(["id", "cat", "subcat", "maintenance"])


def clean_dataframe(
    df: pl.DataFrame,
    data_type: str,
    reference_date: Optional[date] = None,
) -> pl.DataFrame:
    """
    Convenience function to clean one of the customer/reference feeds.

    Args:
        df: Raw feed
        data_type: "customers", "customer_attributes", "locations" or "categories"
        reference_date: Processing date used for the birth date guard

    Returns:
        Cleaned DataFrame
    """
    cleaner = DataCleaner(reference_date=reference_date)

    if data_type == "customers":
        return cleaner.clean_customers(df)
    elif data_type == "customer_attributes":
        return cleaner.clean_customer_attributes(df)
    elif data_type == "locations":
        return cleaner.clean_locations(df)
    elif data_type == "categories":
        return cleaner.clean_categories(df)
    raise ValueError(f"Unknown data type: {data_type}")
