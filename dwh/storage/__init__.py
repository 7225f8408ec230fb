"""
Table Storage Module
"""
from typing import Optional

from dwh.config import get_settings
from .base import TableStore
from .database import DatabaseTableStore
from .parquet import ParquetTableStore


async def open_store(backend: Optional[str] = None) -> TableStore:
    """Open the configured table store ("parquet" or "database")"""
    backend = backend or get_settings().pipeline.store_backend

    if backend == "parquet":
        return ParquetTableStore()
    elif backend == "database":
        return await DatabaseTableStore.connect()
    raise ValueError(f"Unknown store backend: {backend}")


__all__ = [
    "TableStore",
    "ParquetTableStore",
    "DatabaseTableStore",
    "open_store",
]
