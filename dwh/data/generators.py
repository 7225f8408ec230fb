"""
Sample Feed Generator

Generates the six CRM/ERP source feeds as CSV files, dirty in the ways the
real exports are:
- Customers with several versions, padded names, lower-case codes, null ids
- Customer attribute ids with an ``NAS`` prefix, birth dates in the future
- Location ids with hyphens and country synonyms
- Products with several versions and stale end dates
- Sales lines with malformed integer dates and corrupt totals/prices
"""

import random
from datetime import date, timedelta
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import numpy as np
import polars as pl
import structlog
from faker import Faker

from dwh import schemas
from dwh.config import get_settings
from dwh.ingestion.batch_loader import SOURCE_FILES
from dwh.schemas import Layer

logger = structlog.get_logger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

# (id, category, subcategory, maintenance)
CATEGORIES: List[Tuple[str, str, str, str]] = [
    ("AC_BC", "Accessories", "Bottles and Cages", "No"),
    ("AC_HE", "Accessories", "Helmets", "No"),
    ("AC_LO", "Accessories", "Locks", "Yes"),
    ("BI_MB", "Bikes", "Mountain Bikes", "Yes"),
    ("BI_RB", "Bikes", "Road Bikes", "Yes"),
    ("BI_TB", "Bikes", "Touring Bikes", "Yes"),
    ("CL_JE", "Clothing", "Jerseys", "No"),
    ("CL_SH", "Clothing", "Shorts", "No"),
    ("CO_BR", "Components", "Brakes", "Yes"),
    ("CO_HB", "Components", "Handlebars", "Yes"),
]

MARITAL_CODES = (["M", "S", " m", "s ", None], [0.45, 0.45, 0.04, 0.04, 0.02])
GENDER_CODES = (["M", "F", "f", " M ", None], [0.42, 0.42, 0.04, 0.04, 0.08])
ERP_GENDERS = (["Male", "Female", "M", "F", " ", None], [0.4, 0.4, 0.08, 0.08, 0.02, 0.02])
COUNTRIES = (
    ["United States", "US", "USA", "Germany", "DE", "Australia", "Canada", "France", " ", None],
    [0.2, 0.1, 0.1, 0.1, 0.05, 0.15, 0.1, 0.15, 0.03, 0.02],
)
PRODUCT_LINES = (["M", "R", "S", "T", "r ", None], [0.3, 0.3, 0.15, 0.15, 0.05, 0.05])


def _int_date(value: date) -> int:
    return int(value.strftime("%Y%m%d"))


# =============================================================================
# GENERATORS
# =============================================================================

class FeedGenerator:
    """Shared seeded sources of randomness"""

    def __init__(self, seed: int = 42):
        self.rng = random.Random(seed)
        self.np_rng = np.random.default_rng(seed)
        self.fake = Faker()
        self.fake.seed_instance(seed)

    def pick(self, weighted: Tuple[list, list]):
        values, weights = weighted
        return values[self.np_rng.choice(len(values), p=weights)]

    def maybe(self, probability: float) -> bool:
        return self.rng.random() < probability


class CustomerFeedGenerator(FeedGenerator):
    """CRM customers plus the two ERP customer feeds"""

    def generate(self, n: int = 500) -> Dict[str, pl.DataFrame]:
        customers, attributes, locations = [], [], []

        for i in range(n):
            cst_id = 11000 + i
            cst_key = f"AW{cst_id:08d}"
            created = self.fake.date_between(start_date="-6y", end_date="-1y")

            first_name = self.fake.first_name()
            last_name = self.fake.last_name()
            if self.maybe(0.1):
                first_name = f" {first_name}  "

            # Older versions of the same customer
            for version in range(self.rng.choice([0, 0, 0, 0, 1, 2])):
                customers.append({
                    "cst_id": cst_id,
                    "cst_key": cst_key,
                    "cst_firstname": self.fake.first_name(),
                    "cst_lastname": last_name,
                    "cst_marital_status": self.pick(MARITAL_CODES),
                    "cst_gndr": self.pick(GENDER_CODES),
                    "cst_create_date": created - timedelta(days=30 * (version + 1)),
                })

            customers.append({
                "cst_id": cst_id,
                "cst_key": cst_key,
                "cst_firstname": first_name,
                "cst_lastname": last_name,
                "cst_marital_status": self.pick(MARITAL_CODES),
                "cst_gndr": self.pick(GENDER_CODES),
                "cst_create_date": created,
            })

            birth_date = self.fake.date_of_birth(minimum_age=18, maximum_age=90)
            if self.maybe(0.01):
                birth_date = date.today() + timedelta(days=self.rng.randint(1, 3650))

            attributes.append({
                "cid": f"NAS{cst_key}" if self.maybe(0.6) else cst_key,
                "bdate": birth_date,
                "gen": self.pick(ERP_GENDERS),
            })
            locations.append({
                "cid": f"{cst_key[:2]}-{cst_key[2:]}",
                "cntry": self.pick(COUNTRIES),
            })

        # Rows without a customer id
        for _ in range(max(1, n // 200)):
            customers.append({
                "cst_id": None,
                "cst_key": self.fake.bothify("SF#####"),
                "cst_firstname": None,
                "cst_lastname": None,
                "cst_marital_status": None,
                "cst_gndr": None,
                "cst_create_date": None,
            })

        self.rng.shuffle(customers)

        return {
            schemas.CUSTOMERS: pl.DataFrame(customers, schema=schemas.RAW_SCHEMAS[schemas.CUSTOMERS]),
            schemas.CUSTOMER_ATTRIBUTES: pl.DataFrame(attributes, schema=schemas.RAW_SCHEMAS[schemas.CUSTOMER_ATTRIBUTES]),
            schemas.LOCATIONS: pl.DataFrame(locations, schema=schemas.RAW_SCHEMAS[schemas.LOCATIONS]),
        }


class ProductFeedGenerator(FeedGenerator):
    """CRM products (with history) and the ERP category feed"""

    def generate(self, n: int = 100) -> Dict[str, pl.DataFrame]:
        products = []
        prd_id = 200

        for _ in range(n):
            cat_id = self.rng.choice(CATEGORIES)[0]
            code = self.fake.unique.bothify("??-?###", letters="ABCDEFGHIJKLMNOPQRSTUVWXYZ")
            prd_key = f"{cat_id.replace('_', '-')}-{code}"
            name = f"{self.fake.word().title()} {code}"
            line = self.pick(PRODUCT_LINES)

            start = self.fake.date_between(start_date="-8y", end_date="-3y")
            for _ in range(self.rng.choice([1, 1, 2, 3])):
                prd_id += 1
                products.append({
                    "prd_id": prd_id,
                    "prd_key": prd_key,
                    "prd_nm": name,
                    "prd_cost": None if self.maybe(0.03) else self.rng.randint(1, 2000),
                    "prd_line": line,
                    "prd_start_dt": start,
                    # Source end dates are unreliable and often precede the start
                    "prd_end_dt": start - timedelta(days=self.rng.randint(1, 400)) if self.maybe(0.5) else None,
                })
                start = start + timedelta(days=self.rng.randint(180, 720))

        categories = [
            {"id": cat_id, "cat": cat, "subcat": subcat, "maintenance": maintenance}
            for cat_id, cat, subcat, maintenance in CATEGORIES
        ]

        return {
            schemas.PRODUCTS: pl.DataFrame(products, schema=schemas.RAW_SCHEMAS[schemas.PRODUCTS]),
            schemas.CATEGORIES: pl.DataFrame(categories, schema=schemas.RAW_SCHEMAS[schemas.CATEGORIES]),
        }


class SalesFeedGenerator(FeedGenerator):
    """CRM sales lines against generated customers and products"""

    def __init__(self, customers: pl.DataFrame, products: pl.DataFrame, seed: int = 42):
        super().__init__(seed)
        self.customer_ids = customers["cst_id"].drop_nulls().unique(maintain_order=True).to_list()
        self.product_keys = (
            products.select(pl.col("prd_key").str.slice(6).alias("key"))["key"]
            .unique(maintain_order=True)
            .to_list()
        )

    def _date_value(self, value: date) -> int:
        if self.maybe(0.01):
            return 0
        if self.maybe(0.005):
            return int(str(_int_date(value))[:5])
        return _int_date(value)

    def generate(self, n: int = 2000) -> pl.DataFrame:
        lines = []

        for i in range(n):
            order_date = self.fake.date_between(start_date="-3y", end_date="-7d")
            quantity = int(self.np_rng.choice([1, 2, 3, 4], p=[0.8, 0.12, 0.05, 0.03]))
            price = self.rng.randint(2, 3500)
            sales = quantity * price

            if self.maybe(0.02):
                sales = self.rng.choice([None, 0, -sales, sales + self.rng.randint(1, 50)])
            if self.maybe(0.02):
                price = self.rng.choice([None, 0, -price])

            lines.append({
                "sls_ord_num": f"SO{43697 + i // 3}",
                "sls_prd_key": self.rng.choice(self.product_keys),
                "sls_cust_id": self.rng.choice(self.customer_ids),
                "sls_order_dt": self._date_value(order_date),
                "sls_ship_dt": _int_date(order_date + timedelta(days=7)),
                "sls_due_dt": _int_date(order_date + timedelta(days=12)),
                "sls_sales": sales,
                "sls_quantity": quantity,
                "sls_price": price,
            })

        return pl.DataFrame(lines, schema=schemas.RAW_SCHEMAS[schemas.SALES])


# =============================================================================
# MAIN GENERATOR
# =============================================================================

class DataGenerator:
    """
    Generates all six feeds and writes them in the source directory layout.

    Example:
        paths = DataGenerator("./data/source").generate_all(n_customers=200)
    """

    def __init__(self, output_dir: Optional[Union[str, Path]] = None, seed: int = 42):
        self.output_dir = Path(output_dir or get_settings().data_lake.source_path)
        self.seed = seed

    def generate_feeds(
        self,
        n_customers: int = 500,
        n_products: int = 100,
        n_sales: int = 2000,
    ) -> Dict[str, pl.DataFrame]:
        """Generate the feeds in memory, keyed by raw table name"""
        feeds: Dict[str, pl.DataFrame] = {}
        feeds.update(CustomerFeedGenerator(self.seed).generate(n_customers))
        feeds.update(ProductFeedGenerator(self.seed + 1).generate(n_products))
        feeds[schemas.SALES] = SalesFeedGenerator(
            feeds[schemas.CUSTOMERS],
            feeds[schemas.PRODUCTS],
            seed=self.seed + 2,
        ).generate(n_sales)
        return feeds

    def generate_all(
        self,
        n_customers: int = 500,
        n_products: int = 100,
        n_sales: int = 2000,
    ) -> Dict[str, Path]:
        """Generate and write all feeds as CSV; returns the file per table"""
        feeds = self.generate_feeds(n_customers, n_products, n_sales)
        paths = {}

        for table, df in feeds.items():
            path = self.output_dir / SOURCE_FILES[table]
            path.parent.mkdir(parents=True, exist_ok=True)
            df.select(list(schemas.get_schema(Layer.RAW, table))).write_csv(path)
            paths[table] = path
            logger.info("Sample feed written", table=table, rows=len(df), path=str(path))

        return paths
