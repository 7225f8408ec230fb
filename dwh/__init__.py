"""
Sales Data Warehouse

Full-refresh pipeline from raw CRM/ERP feeds to a customer/product star schema.
"""

__version__ = "1.0.0"
