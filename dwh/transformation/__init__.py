"""
Data Transformation Module
"""
from .cleaners import DataCleaner, clean_dataframe
from .dimensions import DimensionalAssembler
from .ordering import OrderingSpec
from .products import ProductConformer
from .sales import SalesReconciler
from .transformers import WarehousePipeline

__all__ = [
    "DataCleaner",
    "clean_dataframe",
    "DimensionalAssembler",
    "OrderingSpec",
    "ProductConformer",
    "SalesReconciler",
    "WarehousePipeline",
]
