"""
Pure back-office core: no Flask, no database.

Callers load a resource and a ledger snapshot, call a lifecycle function and
persist whatever the returned result carries.
"""

from .identifiers import IdentifierError, generate_identifier, generate_unique_identifier
from .ledger import StockLedger, StockMovement
from .results import LifecycleError, LifecycleResult, ValidationResult

__all__ = [
    'IdentifierError', 'generate_identifier', 'generate_unique_identifier',
    'StockLedger', 'StockMovement',
    'LifecycleError', 'LifecycleResult', 'ValidationResult',
]
