"""
Database Module
"""
from .connection import create_engine, check_database_health
from .models import ROW_POSITION, get_table, metadata, physical_name

__all__ = [
    "create_engine",
    "check_database_health",
    "get_table",
    "metadata",
    "ROW_POSITION",
    "physical_name",
]
