"""
Abstract base class for remote table service clients.

This module provides the interface that every binding to the remote
table service must implement. Calls are synchronous and blocking; rate
limiting and retries are layered on top by TableServiceHelper, so
implementations issue exactly one remote request per method call.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Union
import logging

from .models import (
    AccessControlList,
    AccessGrant,
    ColumnChange,
    ColumnDef,
    PollResult,
    RowReferenceSet,
    RowSet,
    SchemaChangeResponse,
    StackStatus,
    TableEntity,
    UploadToTableResult,
)


logger = logging.getLogger(__name__)


class RemoteTableClient(ABC):
    """
    Abstract base class for remote table service clients.

    Poll methods return a PollResult: ``PollResult.not_ready()`` while the
    job is still running, ``PollResult.ready(value)`` once it completed. A
    job that failed remotely raises from the poll method.
    """

    def __init__(self):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @abstractmethod
    def create_columns(self, columns: List[ColumnDef]) -> List[ColumnDef]:
        """
        Create (or resolve) column definitions.

        Args:
            columns: Column definitions, with or without remote ids

        Returns:
            The same columns, in order, bound to their remote ids
        """
        pass

    @abstractmethod
    def create_table(self, name: str, parent_id: str, column_ids: List[str]) -> TableEntity:
        """Create a table entity referencing the given column ids, in order."""
        pass

    @abstractmethod
    def create_acl(self, table_id: str, grants: List[AccessGrant]) -> None:
        """Create the access control list of an entity that has none."""
        pass

    @abstractmethod
    def get_acl(self, entity_id: str) -> Optional[AccessControlList]:
        """Get the access control list of an entity. Returns None if it has none."""
        pass

    @abstractmethod
    def update_acl(self, acl: AccessControlList) -> None:
        """Replace an existing access control list. ``acl.etag`` must be the current etag."""
        pass

    @abstractmethod
    def get_columns(self, table_id: str) -> List[ColumnDef]:
        """Get the live column definitions of a table, in display order."""
        pass

    @abstractmethod
    def start_schema_change_job(
        self,
        table_id: str,
        changes: List[ColumnChange],
        ordered_column_ids: List[str],
    ) -> str:
        """Start a schema change transaction. Returns the job token."""
        pass

    @abstractmethod
    def poll_schema_change_job(
        self, token: str, table_id: str
    ) -> PollResult[List[SchemaChangeResponse]]:
        """Poll a schema change transaction."""
        pass

    @abstractmethod
    def upload_file(self, path: Union[str, Path]) -> str:
        """Upload a local file. Returns the opaque file handle id."""
        pass

    @abstractmethod
    def start_tsv_import_job(
        self,
        table_id: str,
        file_handle_id: str,
        has_header: bool = True,
        delimiter: str = "\t",
    ) -> str:
        """Start importing a delimited text file handle into a table. Returns the job token."""
        pass

    @abstractmethod
    def poll_tsv_import_job(self, token: str, table_id: str) -> PollResult[UploadToTableResult]:
        """Poll a delimited text import job."""
        pass

    @abstractmethod
    def start_append_job(self, table_id: str, row_set: RowSet) -> str:
        """Start appending rows to a table. Returns the job token."""
        pass

    @abstractmethod
    def poll_append_job(self, token: str, table_id: str) -> PollResult[RowReferenceSet]:
        """Poll a row append job."""
        pass

    @abstractmethod
    def lookup_child(self, parent_id: str, name: str) -> Optional[str]:
        """Look up a child entity by name. Returns None if it doesn't exist."""
        pass

    @abstractmethod
    def create_folder(self, parent_id: str, name: str) -> str:
        """Create a folder. Returns the folder id."""
        pass

    @abstractmethod
    def get_stack_status(self) -> StackStatus:
        """Get the operational status of the remote service."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self) -> None:
        """
        Close the client and clean up resources.

        This method can be overridden by clients that hold connections.
        """
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"
