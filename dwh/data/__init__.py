"""
Sample Data Module
"""
from .generators import DataGenerator

__all__ = ["DataGenerator"]
