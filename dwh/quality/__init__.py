"""
Data Quality Module
"""
from .validators import (
    DataValidator,
    ValidationCheck,
    ValidationResult,
    ValidationSeverity,
    ValidationStatus,
    get_validator,
)

__all__ = [
    "DataValidator",
    "ValidationCheck",
    "ValidationResult",
    "ValidationSeverity",
    "ValidationStatus",
    "get_validator",
]
