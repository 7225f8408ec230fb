"""
Parquet Table Store

Data lake layout with one parquet file per table:

    <root>/raw/crm_cust_info.parquet
    <root>/conformed/crm_cust_info.parquet
    <root>/dimensional/dim_customers.parquet

A replacement is written to a temporary file next to the target and moved
into place with ``os.replace``, which is atomic on the same filesystem.
"""

import os
import uuid
from pathlib import Path
from typing import Optional, Union

import polars as pl
import structlog

from dwh.config import get_settings
from dwh.errors import StoreUnavailableError, TableNotFoundError
from dwh.schemas import Layer, enforce_schema, get_schema
from dwh.storage.base import TableStore

logger = structlog.get_logger(__name__)


class ParquetTableStore(TableStore):
    """
    Table store backed by parquet files.

    Example:
        store = ParquetTableStore("./data/lake")
        customers = await store.read_table(Layer.RAW, "crm_cust_info")
    """

    def __init__(
        self,
        root: Optional[Union[str, Path]] = None,
        compression: Optional[str] = None,
    ):
        settings = get_settings()
        self.root = Path(root or settings.data_lake.lake_path)
        self.compression = compression or settings.data_lake.compression

    def path_for(self, layer: Layer, name: str) -> Path:
        return self.root / Layer(layer).value / f"{name}.parquet"

    async def has_table(self, layer: Layer, name: str) -> bool:
        return self.path_for(layer, name).is_file()

    async def read_table(self, layer: Layer, name: str) -> pl.DataFrame:
        layer = Layer(layer)
        path = self.path_for(layer, name)

        if not path.is_file():
            raise TableNotFoundError(
                f"No table at {path}",
                stage=layer.value,
                table=name,
            )

        try:
            df = pl.read_parquet(path)
        except (OSError, pl.exceptions.PolarsError) as e:
            raise StoreUnavailableError(
                f"Could not read {path}: {e}",
                stage=layer.value,
                table=name,
            ) from e

        return enforce_schema(df, get_schema(layer, name), table=name, stage=layer.value)

    async def _swap_table(self, layer: Layer, name: str, df: pl.DataFrame) -> None:
        path = self.path_for(layer, name)
        tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            df.write_parquet(tmp_path, compression=self.compression)
            os.replace(tmp_path, path)
        except (OSError, pl.exceptions.PolarsError) as e:
            tmp_path.unlink(missing_ok=True)
            raise StoreUnavailableError(
                f"Could not write {path}: {e}",
                stage=layer.value,
                table=name,
            ) from e

        logger.debug("Table replaced", path=str(path), rows=len(df))
