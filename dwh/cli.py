"""
Command Line Entry Point

Usage:
    dwh generate-sample --output-dir ./data/source --customers 500
    dwh load-raw --source-dir ./data/source
    dwh refresh-conformed
    dwh refresh-dimensional
    dwh run-all

The table store is chosen by PIPELINE_STORE_BACKEND unless --backend is given.
"""

import argparse
import asyncio
import sys
from typing import List, Optional

import structlog

from dwh.config.logging import configure_logging
from dwh.data.generators import DataGenerator
from dwh.errors import PipelineError
from dwh.ingestion.batch_loader import RawLoader
from dwh.runs import RunResult
from dwh.storage import open_store
from dwh.transformation.transformers import WarehousePipeline

logger = structlog.get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dwh", description="Sales Data Warehouse")
    parser.add_argument(
        "--backend",
        choices=["parquet", "database"],
        default=None,
        help="Table store backend (default: from settings)",
    )
    parser.add_argument(
        "--on-error",
        choices=["abort", "continue"],
        default=None,
        help="What to do after a table fails (default: from settings)",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    load_raw = commands.add_parser("load-raw", help="Load the CSV feeds into the raw layer")
    load_raw.add_argument("--source-dir", default=None, help="Directory holding source_crm/ and source_erp/")

    commands.add_parser("refresh-conformed", help="Rebuild the conformed layer from the raw layer")
    commands.add_parser("refresh-dimensional", help="Rebuild dimensions and the sales fact")
    commands.add_parser("run-all", help="Conformed refresh followed by the dimensional refresh")

    sample = commands.add_parser("generate-sample", help="Write sample CSV feeds")
    sample.add_argument("--output-dir", default=None, help="Target source directory")
    sample.add_argument("--customers", type=int, default=500, help="Number of customers (default: 500)")
    sample.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")

    return parser


async def _run(args: argparse.Namespace) -> List[RunResult]:
    store = await open_store(args.backend)
    try:
        if args.command == "load-raw":
            loader = RawLoader(store, error_policy=args.on_error)
            return [await loader.load_all(args.source_dir)]

        pipeline = WarehousePipeline(store, error_policy=args.on_error)
        if args.command == "refresh-conformed":
            return [await pipeline.refresh_conformed_layer()]
        if args.command == "refresh-dimensional":
            return [await pipeline.refresh_dimensional_layer()]
        return await pipeline.run_all()
    finally:
        await store.close()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()

    if args.command == "generate-sample":
        generator = DataGenerator(args.output_dir, seed=args.seed)
        generator.generate_all(n_customers=args.customers)
        return 0

    try:
        results = asyncio.run(_run(args))
    except PipelineError as e:
        logger.error("Command failed", command=args.command, **e.to_dict())
        return 1

    failed = [r for r in results if not r.succeeded]
    for result in failed:
        logger.error(
            "Run failed",
            run_id=result.run_id,
            stage=result.stage,
            failed_tables=result.failed_tables,
        )
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
