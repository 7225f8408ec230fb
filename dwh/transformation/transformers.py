"""
Warehouse Pipeline

Orchestrates the two refresh stages on top of a table store:

- conformed refresh: each raw feed is cleansed into its conformed table
- dimensional refresh: the conformed tables are assembled into
  dim_customers, dim_products and fact_sales

Stages run strictly in order and every table is fully replaced. Outcomes
are collected per table by a ``RunTracker``; see ``dwh.runs``.
"""

from datetime import date
from typing import Callable, Dict, List, Optional

import polars as pl
import structlog

from dwh import schemas
from dwh.config import get_settings
from dwh.errors import ConformedLayerMissingError, PipelineError
from dwh.quality.validators import ValidationResult, ValidationStatus, get_validator
from dwh.runs import ErrorPolicy, EventSink, RunResult, RunTracker
from dwh.schemas import Layer
from dwh.storage.base import TableStore
from .cleaners import DataCleaner
from .dimensions import DimensionalAssembler
from .products import ProductConformer
from .sales import SalesReconciler

logger = structlog.get_logger(__name__)


class WarehousePipeline:
    """
    Full-refresh pipeline from the raw layer to the dimensional layer.

    Example:
        store = ParquetTableStore("./data/lake")
        pipeline = WarehousePipeline(store)
        await pipeline.refresh_conformed_layer()
        result = await pipeline.refresh_dimensional_layer()
        result.raise_for_status()
    """

    def __init__(
        self,
        store: TableStore,
        error_policy: Optional[ErrorPolicy] = None,
        event_sinks: Optional[List[EventSink]] = None,
        reference_date: Optional[date] = None,
        enable_quality_checks: Optional[bool] = None,
        customer_attr_id_prefix: Optional[str] = None,
    ):
        settings = get_settings().pipeline

        self.store = store
        self.error_policy = ErrorPolicy(error_policy or settings.on_table_error)
        self.event_sinks = event_sinks
        self.enable_quality_checks = (
            settings.enable_quality_checks if enable_quality_checks is None else enable_quality_checks
        )

        prefix = settings.customer_attr_id_prefix if customer_attr_id_prefix is None else customer_attr_id_prefix
        self.cleaner = DataCleaner(reference_date=reference_date, customer_attr_id_prefix=prefix)
        self.product_conformer = ProductConformer()
        self.sales_reconciler = SalesReconciler()
        self.assembler = DimensionalAssembler()

    def _tracker(self, layer: Layer) -> RunTracker:
        return RunTracker(layer.value, sinks=self.event_sinks, policy=self.error_policy)

    def _conformers(self) -> Dict[str, Callable[[pl.DataFrame], pl.DataFrame]]:
        """Conformance transform per source table, in refresh order"""
        return {
            schemas.CUSTOMERS: self.cleaner.clean_customers,
            schemas.PRODUCTS: self.product_conformer.conform,
            schemas.SALES: self.sales_reconciler.reconcile,
            schemas.CUSTOMER_ATTRIBUTES: self.cleaner.clean_customer_attributes,
            schemas.LOCATIONS: self.cleaner.clean_locations,
            schemas.CATEGORIES: self.cleaner.clean_categories,
        }

    def _check_quality(self, layer: Layer, table: str, df: pl.DataFrame) -> Optional[ValidationResult]:
        """Run the table's validator, if quality checks are on and one exists"""
        if not self.enable_quality_checks:
            return None

        validator = get_validator(layer, table)
        if validator is None:
            return None

        result = validator.validate(df)
        if result.status != ValidationStatus.PASSED:
            logger.warning(
                "Quality checks did not pass",
                stage=layer.value,
                table=table,
                status=result.status.value,
                failed_checks=[c.name for c in result.failures],
            )
        return result

    async def refresh_conformed_layer(self) -> RunResult:
        """
        Rebuild all six conformed tables from the raw layer.

        Returns:
            RunResult with one TableResult per source table
        """
        tracker = self._tracker(Layer.CONFORMED)
        logger.info("Conformed refresh started", run_id=tracker.result.run_id, policy=self.error_policy.value)

        for table, conform in self._conformers().items():
            async def work(table=table, conform=conform):
                raw = await self.store.read_table(Layer.RAW, table)
                conformed = conform(raw)
                rows_out = await self.store.replace_table(Layer.CONFORMED, table, conformed)
                return len(raw), rows_out, self._check_quality(Layer.CONFORMED, table, conformed)

            await tracker.refresh(table, work)

        return tracker.finish()

    async def _missing_conformed_tables(self) -> List[str]:
        return [
            table for table in schemas.SOURCE_TABLES
            if not await self.store.has_table(Layer.CONFORMED, table)
        ]

    def _abandon(self, tracker: RunTracker, error: PipelineError) -> RunResult:
        """Fail a dimensional run before any table was touched"""
        logger.error("Dimensional refresh not started", error=error.message, code=error.code)
        for table in schemas.DIMENSIONAL_TABLES:
            tracker.skip(table, error.message)
        return tracker.finish(error=error)

    async def refresh_dimensional_layer(self) -> RunResult:
        """
        Rebuild dim_customers, dim_products and fact_sales.

        All six conformed tables must exist; otherwise the run fails with
        CONFORMED_LAYER_MISSING and nothing is written. The fact table is
        built from the freshly assembled dimensions and is skipped when
        either of them failed.
        """
        tracker = self._tracker(Layer.DIMENSIONAL)
        logger.info("Dimensional refresh started", run_id=tracker.result.run_id, policy=self.error_policy.value)

        try:
            missing = await self._missing_conformed_tables()
        except PipelineError as e:
            return self._abandon(tracker, e)

        if missing:
            return self._abandon(tracker, ConformedLayerMissingError(
                f"Conformed tables missing: {', '.join(missing)}",
                stage=Layer.DIMENSIONAL.value,
            ))

        built: Dict[str, pl.DataFrame] = {}

        async def read(table: str) -> pl.DataFrame:
            return await self.store.read_table(Layer.CONFORMED, table)

        async def publish(table: str, df: pl.DataFrame) -> tuple:
            rows_out = await self.store.replace_table(Layer.DIMENSIONAL, table, df)
            built[table] = df
            return rows_out, self._check_quality(Layer.DIMENSIONAL, table, df)

        async def customers_work():
            customers = await read(schemas.CUSTOMERS)
            dim = self.assembler.build_dim_customers(
                customers,
                await read(schemas.CUSTOMER_ATTRIBUTES),
                await read(schemas.LOCATIONS),
            )
            rows_out, quality = await publish(schemas.DIM_CUSTOMERS, dim)
            return len(customers), rows_out, quality

        async def products_work():
            products = await read(schemas.PRODUCTS)
            dim = self.assembler.build_dim_products(products, await read(schemas.CATEGORIES))
            rows_out, quality = await publish(schemas.DIM_PRODUCTS, dim)
            return len(products), rows_out, quality

        async def fact_work():
            sales = await read(schemas.SALES)
            fact = self.assembler.build_fact_sales(
                sales,
                built[schemas.DIM_CUSTOMERS],
                built[schemas.DIM_PRODUCTS],
            )
            rows_out, quality = await publish(schemas.FACT_SALES, fact)
            return len(sales), rows_out, quality

        await tracker.refresh(schemas.DIM_CUSTOMERS, customers_work)
        await tracker.refresh(schemas.DIM_PRODUCTS, products_work)

        if schemas.DIM_CUSTOMERS in built and schemas.DIM_PRODUCTS in built:
            await tracker.refresh(schemas.FACT_SALES, fact_work)
        else:
            tracker.skip(schemas.FACT_SALES, "a dimension it depends on was not refreshed")

        return tracker.finish()

    async def run_all(self) -> List[RunResult]:
        """
        Conformed refresh followed by the dimensional refresh.

        The dimensional stage only runs when the conformed stage succeeded.
        """
        conformed = await self.refresh_conformed_layer()
        if not conformed.succeeded:
            logger.warning("Dimensional refresh skipped after conformed failure", run_id=conformed.run_id)
            return [conformed]

        return [conformed, await self.refresh_dimensional_layer()]
