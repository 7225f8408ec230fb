"""
Unit Tests - Run Tracking and Errors
"""
import pytest

from dwh.errors import PipelineError, StoreUnavailableError, TableNotFoundError
from dwh.runs import ErrorPolicy, PipelineEvent, RunStatus, RunTracker, TableStatus, log_event


async def succeed():
    return 10, 8, None


async def fail():
    raise StoreUnavailableError("disk gone")


class TestPipelineError:
    """Tests for PipelineError"""

    def test_str_includes_code_and_location(self):
        error = TableNotFoundError("No table", stage="raw", table="crm_cust_info")

        assert str(error) == "[TABLE_NOT_FOUND] raw/crm_cust_info: No table"

    def test_code_override(self):
        error = PipelineError("boom", code="TRANSFORM_FAILED")

        assert error.to_dict() == {
            "code": "TRANSFORM_FAILED",
            "message": "boom",
            "stage": None,
            "table": None,
        }


class TestRunTracker:
    """Tests for RunTracker"""

    async def test_success(self):
        events = []
        tracker = RunTracker("conformed", sinks=[events.append])

        table = await tracker.refresh("t1", succeed)
        result = tracker.finish()

        assert table.status == TableStatus.SUCCEEDED
        assert table.rows_dropped == 2
        assert result.status == RunStatus.SUCCEEDED
        assert [e.event for e in events] == ["table_refreshed", "run_succeeded"]
        assert events[-1].rows_out == 8

    async def test_failure_fills_stage_and_table(self):
        tracker = RunTracker("conformed", sinks=[])

        table = await tracker.refresh("t1", fail)

        assert table.status == TableStatus.FAILED
        assert table.error.code == "STORE_UNREADABLE"
        assert table.error.stage == "conformed"
        assert table.error.table == "t1"

    async def test_abort_skips_remaining(self):
        tracker = RunTracker("conformed", sinks=[], policy=ErrorPolicy.ABORT)

        await tracker.refresh("t1", fail)
        skipped = await tracker.refresh("t2", succeed)
        result = tracker.finish()

        assert skipped.status == TableStatus.SKIPPED
        assert result.status == RunStatus.FAILED
        assert result.failed_tables == ["t1"]

    async def test_continue_runs_remaining(self):
        tracker = RunTracker("conformed", sinks=[], policy="continue")

        await tracker.refresh("t1", fail)
        second = await tracker.refresh("t2", succeed)

        assert second.status == TableStatus.SUCCEEDED
        assert tracker.finish().status == RunStatus.FAILED

    async def test_raise_for_status(self):
        tracker = RunTracker("conformed", sinks=[])
        await tracker.refresh("t1", fail)

        with pytest.raises(StoreUnavailableError):
            tracker.finish().raise_for_status()

    def test_log_event_sink(self):
        """The default sink accepts every event shape"""
        log_event(PipelineEvent(event="table_refreshed", run_id="r", stage="raw", table="t", rows_out=1))
        log_event(PipelineEvent(event="table_skipped", run_id="r", stage="raw", table="t", status="skipped"))
        log_event(PipelineEvent(event="run_failed", run_id="r", stage="raw", error={"code": "X"}))
