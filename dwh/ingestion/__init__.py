"""
Data Ingestion Module
"""
from .batch_loader import RawLoader, SOURCE_FILES

__all__ = ["RawLoader", "SOURCE_FILES"]
