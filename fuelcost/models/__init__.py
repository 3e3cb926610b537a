"""Models package - imports all models for the application"""
from ..extensions import db

from .warehouse import DieselProduct, DieselWarehouse
from .diesel_transaction import DieselTransaction, ENTRY, CONSUMPTION, TRANSACTION_TYPES

__all__ = [
    'db',
    'DieselProduct',
    'DieselWarehouse',
    'DieselTransaction',
    'ENTRY',
    'CONSUMPTION',
    'TRANSACTION_TYPES',
]
