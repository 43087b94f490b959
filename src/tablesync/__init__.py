"""
tablesync: Safe schema evolution and bulk loading for remote tables.

tablesync keeps the column layout of tables in a remote table service in
line with a declared schema, refusing any change that would lose data,
and loads rows into those tables through the service's async job API.
"""

__version__ = "0.1.0"
__author__ = "tablesync Contributors"

from .config import TableSyncConfig
from .exceptions import TableSyncError, ConfigurationError, RemoteError, SchemaRejectedError
from .helper import TableServiceHelper
from .remote.rest_client import RestTableClient

__all__ = [
    "__version__",
    "TableSyncConfig",
    "TableSyncError",
    "ConfigurationError",
    "RemoteError",
    "SchemaRejectedError",
    "TableServiceHelper",
    "RestTableClient",
]
