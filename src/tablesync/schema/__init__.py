"""
Schema management package for tablesync.

This package provides:
- Column compatibility rules
- Schema reconciliation core logic
- Declarative table schema descriptions
"""

from .compatibility import is_compatible
from .reconciler import SchemaReconciler, ReconciliationResult, ReconciliationStatus, SchemaDiff
from .description import TableSchema, SchemaBuilder

__all__ = [
    "is_compatible",
    "SchemaReconciler",
    "ReconciliationResult",
    "ReconciliationStatus",
    "SchemaDiff",
    "TableSchema",
    "SchemaBuilder",
]
