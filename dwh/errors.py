"""
Pipeline Errors

Structured failures that abort a refresh run. Row-level problems (bad dates,
zero quantities, unmatched dimension keys) never raise; they are repaired in
place by nulling the affected value.
"""

from typing import Any, Dict, Optional


class PipelineError(Exception):
    """Base error carrying a machine-readable code and the originating stage"""

    code = "PIPELINE_ERROR"

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        table: Optional[str] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.table = table
        if code is not None:
            self.code = code

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "stage": self.stage,
            "table": self.table,
        }

    def __str__(self) -> str:
        location = "/".join(part for part in (self.stage, self.table) if part)
        if location:
            return f"[{self.code}] {location}: {self.message}"
        return f"[{self.code}] {self.message}"


class StoreUnavailableError(PipelineError):
    """The backing store could not be read or written"""

    code = "STORE_UNREADABLE"


class TableNotFoundError(PipelineError):
    """A table requested from a store does not exist"""

    code = "TABLE_NOT_FOUND"


class SchemaMismatchError(PipelineError):
    """A table is missing columns or holds values of the wrong type"""

    code = "SCHEMA_MISMATCH"


class ConformedLayerMissingError(PipelineError):
    """The dimensional refresh ran before a successful conformed refresh"""

    code = "CONFORMED_LAYER_MISSING"
