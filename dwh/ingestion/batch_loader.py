"""
Raw Feed Loader

Bulk-copies the six CSV source feeds into the raw layer of a table store.

Feeds are read positionally: the header row is skipped and columns take the
raw layer's names in order, so a CRM export with renamed headers still
lands in the right columns. Values are only cast to the raw column types;
trimming, decoding and repair happen in the conformed refresh.
"""

from pathlib import Path
from typing import Dict, List, Optional, Union

import polars as pl
import structlog

from dwh import schemas
from dwh.config import get_settings
from dwh.errors import SchemaMismatchError, StoreUnavailableError, TableNotFoundError
from dwh.runs import ErrorPolicy, EventSink, RunResult, RunTracker
from dwh.schemas import Layer
from dwh.storage.base import TableStore

logger = structlog.get_logger(__name__)

# Raw table -> CSV path relative to the source directory
SOURCE_FILES: Dict[str, str] = {
    schemas.CUSTOMERS: "source_crm/cust_info.csv",
    schemas.PRODUCTS: "source_crm/prd_info.csv",
    schemas.SALES: "source_crm/sales_details.csv",
    schemas.CUSTOMER_ATTRIBUTES: "source_erp/CUST_AZ12.csv",
    schemas.LOCATIONS: "source_erp/LOC_A101.csv",
    schemas.CATEGORIES: "source_erp/PX_CAT_G1V2.csv",
}

NULL_VALUES = ["", "NULL", "null"]


class RawLoader:
    """
    Loads the CSV feeds into the raw layer, one full refresh per table.

    Example:
        loader = RawLoader(store)
        result = await loader.load_all("./data/source")
    """

    def __init__(
        self,
        store: TableStore,
        event_sinks: Optional[List[EventSink]] = None,
        error_policy: Optional[ErrorPolicy] = None,
    ):
        self.store = store
        self.event_sinks = event_sinks
        self.error_policy = ErrorPolicy(error_policy or get_settings().pipeline.on_table_error)

    def read_feed(self, path: Path, table: str) -> pl.DataFrame:
        """
        Read one CSV feed as strings, named after the raw table's columns.

        Raises:
            TableNotFoundError: The file does not exist
            SchemaMismatchError: The file has the wrong number of columns
            StoreUnavailableError: The file could not be parsed
        """
        if not path.is_file():
            raise TableNotFoundError(f"Source file not found: {path}", stage=Layer.RAW.value, table=table)

        columns = list(schemas.get_schema(Layer.RAW, table))

        try:
            df = pl.read_csv(
                path,
                has_header=True,
                infer_schema=False,
                null_values=NULL_VALUES,
            )
        except (OSError, pl.exceptions.PolarsError) as e:
            raise StoreUnavailableError(
                f"Could not read {path}: {e}",
                stage=Layer.RAW.value,
                table=table,
            ) from e

        if df.width != len(columns):
            raise SchemaMismatchError(
                f"{path.name} has {df.width} columns, expected {len(columns)}",
                stage=Layer.RAW.value,
                table=table,
            )

        return df.rename(dict(zip(df.columns, columns)))

    async def load_table(self, source_dir: Path, table: str) -> tuple:
        df = self.read_feed(source_dir / SOURCE_FILES[table], table)
        rows_out = await self.store.replace_table(Layer.RAW, table, df)
        return len(df), rows_out, None

    async def load_all(self, source_dir: Optional[Union[str, Path]] = None) -> RunResult:
        """
        Replace every raw table from its CSV feed.

        Args:
            source_dir: Directory holding ``source_crm/`` and ``source_erp/``

        Returns:
            RunResult with one TableResult per feed
        """
        source_dir = Path(source_dir or get_settings().data_lake.source_path)
        tracker = RunTracker(Layer.RAW.value, sinks=self.event_sinks, policy=self.error_policy)

        logger.info("Raw load started", run_id=tracker.result.run_id, source_dir=str(source_dir))

        for table in SOURCE_FILES:
            await tracker.refresh(
                table,
                lambda table=table: self.load_table(source_dir, table),
            )

        return tracker.finish()
