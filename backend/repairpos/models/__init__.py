# Overview: Database models package; import all models here so metadata is complete.

from .settings import Currency, Tax
from .products import Product, ProductCost
from .inventory import (
    InventoryLocation,
    InventoryIncrement,
    IncrementSerial,
    ProductSerialNumber,
    InventoryTransfer,
)
from .audit import EntityLog
from .sales import Sale, SaleLine

__all__ = [
    "Currency",
    "Tax",
    "Product",
    "ProductCost",
    "InventoryLocation",
    "InventoryIncrement",
    "IncrementSerial",
    "ProductSerialNumber",
    "InventoryTransfer",
    "EntityLog",
    "Sale",
    "SaleLine",
]
