"""
Data Validation Module

Rule-based quality checks run after each table refresh.

Checks cover:
- Null and uniqueness constraints on keys
- Allowed value domains for decoded codes
- Row-level business rules (sales triangle, validity intervals)

Failed checks are reported, never enforced: a refresh is not rolled back
because a check failed.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import polars as pl
import structlog

from dwh import schemas
from dwh.schemas import NOT_AVAILABLE, Layer

logger = structlog.get_logger(__name__)


class ValidationSeverity(str, Enum):
    """Severity levels for validation failures"""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class ValidationStatus(str, Enum):
    """Overall validation status"""
    PASSED = "passed"
    FAILED = "failed"
    PARTIAL = "partial"


@dataclass
class ValidationCheck:
    """Single validation check result"""
    name: str
    passed: bool
    severity: ValidationSeverity
    message: str
    details: Optional[Dict[str, Any]] = None
    failed_rows: int = 0
    total_rows: int = 0


@dataclass
class ValidationResult:
    """Complete validation suite result"""
    status: ValidationStatus
    total_checks: int
    passed_checks: int
    failed_checks: int
    warning_count: int
    checks: List[ValidationCheck] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        """Percentage of passed checks"""
        if self.total_checks == 0:
            return 100.0
        return (self.passed_checks / self.total_checks) * 100

    @property
    def failures(self) -> List[ValidationCheck]:
        return [c for c in self.checks if not c.passed]


def _missing_column(name: str, column: str, severity: ValidationSeverity) -> ValidationCheck:
    return ValidationCheck(
        name=name,
        passed=False,
        severity=severity,
        message=f"Column '{column}' not found",
    )


class DataValidator:
    """
    Chainable validator over a polars DataFrame.

    Example:
        validator = DataValidator()
        validator.add_not_null_check("cst_id").add_unique_check("cst_id")
        result = validator.validate(df)
    """

    def __init__(self, name: str = "validator", strict_mode: bool = False):
        self.name = name
        self.strict_mode = strict_mode  # Fail on any warning
        self._checks: List[Callable[[pl.DataFrame], ValidationCheck]] = []

    def add_not_null_check(
        self,
        column: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check for null values in column"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            name = f"not_null_{column}"
            if column not in df.columns:
                return _missing_column(name, column, severity)

            null_count = df[column].null_count()
            passed = null_count == 0

            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message=f"Column '{column}' has {null_count} null values" if not passed else f"Column '{column}' has no null values",
                details={"null_count": null_count},
                failed_rows=null_count,
                total_rows=len(df),
            )

        self._checks.append(check)
        return self

    def add_unique_check(
        self,
        column: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check for uniqueness of column values"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            name = f"unique_{column}"
            if column not in df.columns:
                return _missing_column(name, column, severity)

            total = len(df)
            duplicate_count = total - df[column].n_unique()
            passed = duplicate_count == 0

            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message=f"Column '{column}' has {duplicate_count} duplicate values" if not passed else f"Column '{column}' values are unique",
                details={"duplicate_count": duplicate_count},
                failed_rows=duplicate_count,
                total_rows=total,
            )

        self._checks.append(check)
        return self

    def add_enum_check(
        self,
        column: str,
        allowed_values: List[Any],
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check for values in allowed set"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            name = f"enum_{column}"
            if column not in df.columns:
                return _missing_column(name, column, severity)

            invalid = df.filter(
                ~pl.col(column).is_in(allowed_values) & pl.col(column).is_not_null()
            ).height
            passed = invalid == 0

            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message=f"Column '{column}' has {invalid} invalid values" if not passed else "All values are valid",
                details={"allowed_values": allowed_values, "invalid_count": invalid},
                failed_rows=invalid,
                total_rows=len(df),
            )

        self._checks.append(check)
        return self

    def add_row_rule_check(
        self,
        name: str,
        violation: pl.Expr,
        message_on_fail: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check that no row satisfies the ``violation`` predicate"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            try:
                violating = df.filter(violation).height
            except pl.exceptions.PolarsError as e:
                return ValidationCheck(
                    name=name,
                    passed=False,
                    severity=severity,
                    message=f"Check failed with error: {e}",
                )

            passed = violating == 0
            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message="Check passed" if passed else f"{message_on_fail} ({violating} rows)",
                failed_rows=violating,
                total_rows=len(df),
            )

        self._checks.append(check)
        return self

    def validate(self, df: pl.DataFrame) -> ValidationResult:
        """
        Run all validation checks on DataFrame.

        Args:
            df: DataFrame to validate

        Returns:
            ValidationResult with all check results
        """
        started_at = datetime.now(timezone.utc)
        results = [check_func(df) for check_func in self._checks]

        for result in results:
            if not result.passed:
                logger.warning(
                    "Validation failed",
                    validator=self.name,
                    check=result.name,
                    message=result.message,
                    severity=result.severity.value,
                )

        passed_checks = sum(1 for r in results if r.passed)
        failed_checks = sum(1 for r in results if not r.passed and r.severity == ValidationSeverity.ERROR)
        warning_count = sum(1 for r in results if not r.passed and r.severity == ValidationSeverity.WARNING)

        if failed_checks > 0:
            status = ValidationStatus.FAILED
        elif warning_count > 0 and self.strict_mode:
            status = ValidationStatus.FAILED
        elif warning_count > 0:
            status = ValidationStatus.PARTIAL
        else:
            status = ValidationStatus.PASSED

        logger.debug(
            "Validation complete",
            validator=self.name,
            status=status.value,
            passed=passed_checks,
            failed=failed_checks,
            warnings=warning_count,
        )

        return ValidationResult(
            status=status,
            total_checks=len(results),
            passed_checks=passed_checks,
            failed_checks=failed_checks,
            warning_count=warning_count,
            checks=results,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
        )


# Pre-built validators for warehouse tables
def create_customers_validator() -> DataValidator:
    """Conformed customers: one row per id, decoded code domains"""
    return (
        DataValidator(name="conformed_customers")
        .add_not_null_check("cst_id")
        .add_unique_check("cst_id")
        .add_enum_check("cst_marital_status", ["Married", "Single", NOT_AVAILABLE])
        .add_enum_check("cst_gndr", ["Male", "Female", NOT_AVAILABLE])
    )


def create_products_validator() -> DataValidator:
    """Conformed products: at most one open version per key, ordered intervals"""
    return (
        DataValidator(name="conformed_products")
        .add_not_null_check("prd_key")
        .add_row_rule_check(
            "non_negative_cost",
            pl.col("prd_cost") < 0,
            "Products with a negative cost",
            severity=ValidationSeverity.WARNING,
        )
        .add_row_rule_check(
            "single_open_version",
            pl.col("prd_end_dt").is_null().sum().over("prd_key") > 1,
            "Product keys with more than one open-ended version",
        )
        .add_row_rule_check(
            "interval_order",
            pl.col("prd_end_dt") < pl.col("prd_start_dt"),
            "Product versions ending before they start",
            severity=ValidationSeverity.WARNING,
        )
    )


def create_sales_validator() -> DataValidator:
    """Conformed sales: the sales/quantity/price triangle holds"""
    quantity = pl.col("sls_quantity")
    return (
        DataValidator(name="conformed_sales")
        .add_row_rule_check(
            "sales_triangle",
            (quantity != 0) & (pl.col("sls_sales") != quantity * pl.col("sls_price").abs()),
            "Sales amount differs from quantity * price",
            severity=ValidationSeverity.WARNING,
        )
    )


def create_dim_customers_validator() -> DataValidator:
    return (
        DataValidator(name="dim_customers")
        .add_not_null_check("customer_key")
        .add_unique_check("customer_key")
        .add_unique_check("customer_id")
    )


def create_dim_products_validator() -> DataValidator:
    return (
        DataValidator(name="dim_products")
        .add_not_null_check("product_key")
        .add_unique_check("product_key")
        .add_row_rule_check(
            "current_versions_only",
            pl.col("end_date").is_not_null(),
            "Historical product versions in the dimension",
        )
    )


VALIDATOR_FACTORIES: Dict[tuple, Callable[[], DataValidator]] = {
    (Layer.CONFORMED, schemas.CUSTOMERS): create_customers_validator,
    (Layer.CONFORMED, schemas.PRODUCTS): create_products_validator,
    (Layer.CONFORMED, schemas.SALES): create_sales_validator,
    (Layer.DIMENSIONAL, schemas.DIM_CUSTOMERS): create_dim_customers_validator,
    (Layer.DIMENSIONAL, schemas.DIM_PRODUCTS): create_dim_products_validator,
}


def get_validator(layer: Layer, table: str) -> Optional[DataValidator]:
    """Pre-built validator for a warehouse table, if one exists"""
    factory = VALIDATOR_FACTORIES.get((Layer(layer), table))
    return factory() if factory else None
