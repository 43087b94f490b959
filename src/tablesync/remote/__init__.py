"""
Remote table service boundary for tablesync.

This package provides:
- The RemoteTableClient interface
- Typed values exchanged with the remote service
- A REST binding (``tablesync.remote.rest_client``)
"""

from .base import RemoteTableClient
from .models import (
    AccessControlList,
    AccessGrant,
    ColumnChange,
    ColumnDef,
    ColumnType,
    Permission,
    PollResult,
    RowReferenceSet,
    RowSet,
    SchemaChangeResponse,
    StackStatus,
    TableEntity,
    UploadToTableResult,
)

__all__ = [
    "RemoteTableClient",
    "AccessControlList",
    "AccessGrant",
    "ColumnChange",
    "ColumnDef",
    "ColumnType",
    "Permission",
    "PollResult",
    "RowReferenceSet",
    "RowSet",
    "SchemaChangeResponse",
    "StackStatus",
    "TableEntity",
    "UploadToTableResult",
]
