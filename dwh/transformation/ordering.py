"""
Explicit row ordering for window-style derivations.

Deduplication and effective dating both depend on the order of rows inside a
partition. The order is spelled out here (partition key, sort key, direction,
tie-break on input position) instead of relying on whatever order an engine
happens to return.
"""

from dataclasses import dataclass
from typing import Optional

import polars as pl

ROW_INDEX = "_input_position"


@dataclass(frozen=True)
class OrderingSpec:
    """Partition key, sort key and direction, with ties broken by input position"""
    partition_by: str
    order_by: str
    descending: bool = False
    tie_break: Optional[str] = None  # ascending, checked before input position

    def sort(self, df: pl.DataFrame) -> pl.DataFrame:
        """
        Stable sort by (partition, order key, tie-break, input position).

        Nulls in the order key rank lowest: first when ascending, last when
        descending. The returned frame carries the input-position column.
        """
        if ROW_INDEX not in df.columns:
            df = df.with_row_index(ROW_INDEX)

        keys = [self.partition_by, self.order_by]
        descending = [False, self.descending]
        if self.tie_break:
            keys.append(self.tie_break)
            descending.append(False)

        return df.sort(
            [*keys, ROW_INDEX],
            descending=[*descending, False],
            nulls_last=self.descending,
        )

    def first_per_partition(self, df: pl.DataFrame) -> pl.DataFrame:
        """Keep the first row of every partition under this ordering"""
        ordered = self.sort(df)
        return (
            ordered
            .unique(subset=[self.partition_by], keep="first", maintain_order=True)
            .drop(ROW_INDEX)
        )
