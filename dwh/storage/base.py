"""
Table Store Interface

A table store holds the raw, conformed and dimensional layers. Tables are
addressed by ``(layer, name)`` and always replaced whole: a new snapshot is
fully built before it becomes visible, so readers see either the previous
table or the new one, never a half-written mix.
"""

from abc import ABC, abstractmethod

import polars as pl

from dwh.schemas import Layer, enforce_schema, get_schema


class TableStore(ABC):
    """Async storage backend for warehouse tables"""

    @abstractmethod
    async def read_table(self, layer: Layer, name: str) -> pl.DataFrame:
        """
        Read a whole table.

        Raises:
            TableNotFoundError: The table has never been written
            StoreUnavailableError: The backend could not be read
        """

    @abstractmethod
    async def _swap_table(self, layer: Layer, name: str, df: pl.DataFrame) -> None:
        """Atomically make ``df`` the new contents of the table"""

    @abstractmethod
    async def has_table(self, layer: Layer, name: str) -> bool:
        """Whether the table has been written at least once"""

    async def replace_table(self, layer: Layer, name: str, df: pl.DataFrame) -> int:
        """
        Replace a table with a new snapshot.

        The frame is checked against the table's schema before anything is
        written.

        Returns:
            Number of rows written
        """
        snapshot = enforce_schema(df, get_schema(layer, name), table=name, stage=Layer(layer).value)
        await self._swap_table(Layer(layer), name, snapshot)
        return len(snapshot)

    async def close(self) -> None:
        """Release backend resources"""
