"""
Run Tracking

Outcome types and progress events for refresh runs.

Every table a run touches yields a ``TableResult`` (succeeded, failed or
skipped) and a ``PipelineEvent``; the run ends with one terminal event. The
error policy decides whether a failed table stops the remaining independent
tables or lets them run.
"""

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import structlog
from structlog.contextvars import bound_contextvars

from dwh.errors import PipelineError

logger = structlog.get_logger(__name__)


class TableStatus(str, Enum):
    """Outcome of one table within a run"""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class RunStatus(str, Enum):
    """Outcome of a whole run"""
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ErrorPolicy(str, Enum):
    """What a run does after a table fails"""
    ABORT = "abort"  # skip every remaining table
    CONTINUE = "continue"  # still refresh tables that do not depend on the failed one


@dataclass
class PipelineEvent:
    """Structured progress event"""
    event: str
    run_id: str
    stage: str
    table: Optional[str] = None
    status: Optional[str] = None
    rows_in: Optional[int] = None
    rows_out: Optional[int] = None
    duration_seconds: float = 0.0
    error: Optional[Dict[str, Any]] = None
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.event,
            "run_id": self.run_id,
            "stage": self.stage,
            "table": self.table,
            "status": self.status,
            "rows_in": self.rows_in,
            "rows_out": self.rows_out,
            "duration_seconds": self.duration_seconds,
            "error": self.error,
            "emitted_at": self.emitted_at.isoformat(),
        }


EventSink = Callable[[PipelineEvent], None]


def log_event(event: PipelineEvent) -> None:
    """Default sink: write the event to the structured log"""
    fields = {k: v for k, v in event.to_dict().items() if v is not None and k != "event"}
    if event.error is not None:
        logger.error(event.event, **fields)
    elif event.status == TableStatus.SKIPPED.value:
        logger.warning(event.event, **fields)
    else:
        logger.info(event.event, **fields)


@dataclass
class TableResult:
    """Result of refreshing one table"""
    stage: str
    table: str
    status: TableStatus
    rows_in: int = 0
    rows_out: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: float = 0.0
    error: Optional[PipelineError] = None
    quality: Optional[Any] = None

    @property
    def rows_dropped(self) -> int:
        return self.rows_in - self.rows_out


@dataclass
class RunResult:
    """Result of a refresh run"""
    run_id: str
    stage: str
    status: RunStatus = RunStatus.RUNNING
    tables: Dict[str, TableResult] = field(default_factory=dict)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    duration_seconds: float = 0.0
    error: Optional[PipelineError] = None

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.SUCCEEDED

    @property
    def failed_tables(self) -> List[str]:
        return [name for name, t in self.tables.items() if t.status == TableStatus.FAILED]

    def raise_for_status(self) -> "RunResult":
        """Raise the run's first error if it failed"""
        if self.status == RunStatus.FAILED:
            raise self.error or PipelineError("Run failed", stage=self.stage)
        return self


# Work for one table: returns (rows read, rows written, optional quality result)
TableWork = Callable[[], Awaitable[Tuple[int, int, Optional[Any]]]]


class RunTracker:
    """
    Times tables, converts failures into outcomes and emits events.

    Example:
        tracker = RunTracker("conformed", sinks=[log_event])
        await tracker.refresh("crm_cust_info", work)
        result = tracker.finish()
    """

    def __init__(
        self,
        stage: str,
        sinks: Optional[List[EventSink]] = None,
        policy: ErrorPolicy = ErrorPolicy.ABORT,
    ):
        self.stage = stage
        self.sinks = sinks if sinks is not None else [log_event]
        self.policy = ErrorPolicy(policy)
        self.result = RunResult(run_id=uuid.uuid4().hex[:12], stage=stage)
        self._clock = time.perf_counter()

    @property
    def aborted(self) -> bool:
        """A table failed under the abort policy"""
        return self.policy == ErrorPolicy.ABORT and bool(self.result.failed_tables)

    def emit(self, event: PipelineEvent) -> None:
        for sink in self.sinks:
            sink(event)

    async def refresh(self, table: str, work: TableWork) -> TableResult:
        """Run ``work`` for a table and record the outcome"""
        if self.aborted:
            return self.skip(table, "run aborted after an earlier failure")

        started_at = datetime.now(timezone.utc)
        clock = time.perf_counter()
        rows_in = rows_out = 0
        quality = None
        error: Optional[PipelineError] = None

        try:
            with bound_contextvars(run_id=self.result.run_id, stage=self.stage, table=table):
                rows_in, rows_out, quality = await work()
        except PipelineError as e:
            e.stage = e.stage or self.stage
            e.table = e.table or table
            error = e
        except Exception as e:
            error = PipelineError(
                f"{type(e).__name__}: {e}",
                stage=self.stage,
                table=table,
                code="TRANSFORM_FAILED",
            )
            logger.exception("Unexpected failure while refreshing table", stage=self.stage, table=table)

        result = TableResult(
            stage=self.stage,
            table=table,
            status=TableStatus.FAILED if error else TableStatus.SUCCEEDED,
            rows_in=rows_in,
            rows_out=rows_out,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
            duration_seconds=round(time.perf_counter() - clock, 4),
            error=error,
            quality=quality,
        )
        self.result.tables[table] = result
        if error and self.result.error is None:
            self.result.error = error

        self.emit(PipelineEvent(
            event="table_failed" if error else "table_refreshed",
            run_id=self.result.run_id,
            stage=self.stage,
            table=table,
            status=result.status.value,
            rows_in=rows_in,
            rows_out=rows_out,
            duration_seconds=result.duration_seconds,
            error=error.to_dict() if error else None,
        ))
        return result

    def skip(self, table: str, reason: str) -> TableResult:
        """Record a table that was not attempted"""
        result = TableResult(stage=self.stage, table=table, status=TableStatus.SKIPPED)
        self.result.tables[table] = result

        self.emit(PipelineEvent(
            event="table_skipped",
            run_id=self.result.run_id,
            stage=self.stage,
            table=table,
            status=result.status.value,
        ))
        logger.debug("Table skipped", stage=self.stage, table=table, reason=reason)
        return result

    def finish(self, error: Optional[PipelineError] = None) -> RunResult:
        """Close the run and emit the terminal event"""
        run = self.result
        if error is not None and run.error is None:
            error.stage = error.stage or self.stage
            run.error = error

        failed = run.error is not None or any(
            t.status != TableStatus.SUCCEEDED for t in run.tables.values()
        )
        run.status = RunStatus.FAILED if failed else RunStatus.SUCCEEDED
        run.completed_at = datetime.now(timezone.utc)
        run.duration_seconds = round(time.perf_counter() - self._clock, 4)

        self.emit(PipelineEvent(
            event="run_failed" if failed else "run_succeeded",
            run_id=run.run_id,
            stage=self.stage,
            status=run.status.value,
            rows_out=sum(t.rows_out for t in run.tables.values()),
            duration_seconds=run.duration_seconds,
            error=run.error.to_dict() if run.error else None,
        ))
        return run
