"""
High-level table operations against the remote table service.

TableServiceHelper composes the building blocks: every remote call goes
through the rate gate and then the retry shell, async jobs are driven by
the poller, and schema updates are checked by the reconciler before
anything is written.
"""

import logging
import time
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, TypeVar, Union

from .config import TableSyncConfig
from .exceptions import (
    ColumnCountMismatchError,
    MissingResultError,
    OverlappingPrincipalsError,
    ServiceUnavailableError,
    UnexpectedResultError,
)
from .remote.base import RemoteTableClient
from .remote.models import (
    AccessControlList,
    AccessGrant,
    ColumnChange,
    ColumnDef,
    Permission,
    PollResult,
    RowReferenceSet,
    RowSet,
    SchemaChangeResponse,
    StackStatus,
    TableEntity,
    UploadToTableResult,
)
from .resilience.poller import AsyncJobPoller, JobKind, PollSchedule
from .resilience.rate_gate import Bucket, RateGate
from .resilience.retry import RetryPolicy
from .schema.reconciler import SchemaReconciler, build_column_changes

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _distinct(ids: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for principal_id in ids:
        principal_id = str(principal_id)
        if principal_id not in seen:
            seen.add(principal_id)
            result.append(principal_id)
    return result


class TableServiceHelper:
    """
    Rate limited, retrying operations on remote tables.

    The helper holds no per-table state. One instance can serve many
    tables and threads; the shared RateGate is the only mutable state.
    """

    def __init__(
        self,
        client: RemoteTableClient,
        config: Optional[TableSyncConfig] = None,
        rate_gate: Optional[RateGate] = None,
        poller: Optional[AsyncJobPoller] = None,
        reconciler: Optional[SchemaReconciler] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.config = config or TableSyncConfig()
        self.rate_gate = rate_gate or RateGate.from_config(self.config.rate_limits)
        self.poller = poller or AsyncJobPoller(
            PollSchedule.from_config(self.config.polling), sleep=sleep
        )
        self.reconciler = reconciler or SchemaReconciler()
        self._sleep = sleep

        self.metadata_policy = self.config.retries.metadata.to_policy()
        self.upload_policy = self.config.retries.upload.to_policy()
        self.folder_policy = self.config.retries.folder.to_policy()

    def _call(
        self,
        bucket: Bucket,
        policy: Optional[RetryPolicy],
        fn: Callable[..., T],
        *args,
        **kwargs,
    ) -> T:
        """Acquire a rate limit token, then invoke ``fn`` under ``policy``."""

        def attempt() -> T:
            # Every attempt is a separate remote request
            self.rate_gate.acquire(bucket)
            return fn(*args, **kwargs)

        attempt.__name__ = getattr(fn, "__name__", "remote call")
        if policy is None:
            return attempt()
        return policy.call(attempt, sleep=self._sleep)

    # ------------------------------------------------------------------
    # Single remote calls
    # ------------------------------------------------------------------

    def create_columns_with_retry(self, columns: List[ColumnDef]) -> List[ColumnDef]:
        return self._call(Bucket.GENERAL, self.metadata_policy, self.client.create_columns, columns)

    def create_table_with_retry(self, name: str, parent_id: str, column_ids: List[str]) -> TableEntity:
        return self._call(
            Bucket.GENERAL, self.metadata_policy, self.client.create_table, name, parent_id, column_ids
        )

    def create_acl_with_retry(self, table_id: str, grants: List[AccessGrant]) -> None:
        self._call(Bucket.GENERAL, self.metadata_policy, self.client.create_acl, table_id, grants)

    def get_acl_with_retry(self, entity_id: str) -> Optional[AccessControlList]:
        return self._call(Bucket.GENERAL, self.metadata_policy, self.client.get_acl, entity_id)

    def update_acl_with_retry(self, acl: AccessControlList) -> None:
        self._call(Bucket.GENERAL, self.metadata_policy, self.client.update_acl, acl)

    def get_columns_for_table_with_retry(self, table_id: str) -> List[ColumnDef]:
        # Column metadata queries are throttled much harder than other calls
        return self._call(Bucket.METADATA, self.metadata_policy, self.client.get_columns, table_id)

    def start_schema_change_with_retry(
        self, table_id: str, changes: List[ColumnChange], ordered_column_ids: List[str]
    ) -> str:
        return self._call(
            Bucket.GENERAL,
            self.metadata_policy,
            self.client.start_schema_change_job,
            table_id,
            changes,
            ordered_column_ids,
        )

    def get_schema_change_result_with_retry(
        self, token: str, table_id: str
    ) -> PollResult[List[SchemaChangeResponse]]:
        return self._call(
            Bucket.GENERAL, self.metadata_policy, self.client.poll_schema_change_job, token, table_id
        )

    def upload_file_with_retry(self, path: Union[str, Path]) -> str:
        return self._call(Bucket.GENERAL, self.upload_policy, self.client.upload_file, path)

    def start_tsv_import_with_retry(self, table_id: str, file_handle_id: str) -> str:
        return self._call(
            Bucket.GENERAL,
            self.metadata_policy,
            self.client.start_tsv_import_job,
            table_id,
            file_handle_id,
            has_header=True,
            delimiter="\t",
        )

    def get_tsv_import_status_with_retry(
        self, token: str, table_id: str
    ) -> PollResult[UploadToTableResult]:
        return self._call(
            Bucket.GENERAL, self.metadata_policy, self.client.poll_tsv_import_job, token, table_id
        )

    def start_append_with_retry(self, table_id: str, row_set: RowSet) -> str:
        return self._call(
            Bucket.GENERAL, self.metadata_policy, self.client.start_append_job, table_id, row_set
        )

    def get_append_result_with_retry(self, token: str, table_id: str) -> PollResult[RowReferenceSet]:
        return self._call(
            Bucket.GENERAL, self.metadata_policy, self.client.poll_append_job, token, table_id
        )

    def lookup_child_with_retry(self, parent_id: str, name: str) -> Optional[str]:
        return self._call(Bucket.GENERAL, self.metadata_policy, self.client.lookup_child, parent_id, name)

    def create_folder_with_retry(self, parent_id: str, name: str) -> str:
        return self._call(Bucket.GENERAL, self.folder_policy, self.client.create_folder, parent_id, name)

    def get_stack_status_with_retry(self) -> StackStatus:
        return self._call(Bucket.GENERAL, self.metadata_policy, self.client.get_stack_status)

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    def create_table_with_columns_and_acls(
        self,
        columns: Sequence[ColumnDef],
        read_only_principal_ids: Iterable[str],
        admin_principal_ids: Iterable[str],
        parent_id: str,
        table_name: str,
    ) -> str:
        """
        Create a table with the given columns and access control list.

        Args:
            columns: Column definitions, in table order
            read_only_principal_ids: Principals granted read and download
            admin_principal_ids: Principals granted full admin access
            parent_id: Parent project or folder id
            table_name: Name of the new table

        Returns:
            The new table's id

        Raises:
            OverlappingPrincipalsError: If a principal is in both lists
            ColumnCountMismatchError: If the service created a different
                number of columns than requested
        """
        read_only = _distinct(read_only_principal_ids)
        admins = _distinct(admin_principal_ids)
        overlap = set(read_only) & set(admins)
        if overlap:
            raise OverlappingPrincipalsError(overlap)

        columns = list(columns)
        created = self.create_columns_with_retry(columns)
        if len(created) != len(columns):
            raise ColumnCountMismatchError(table_name, len(columns), len(created))

        column_ids = [c.remote_id for c in created]
        table = self.create_table_with_retry(table_name, parent_id, column_ids)
        table_id = table.remote_id
        logger.info(f"Created table {table_name} ({table_id}) with {len(column_ids)} columns")

        grants = [AccessGrant(p, Permission.READ_ONLY) for p in read_only]
        grants += [AccessGrant(p, Permission.ADMIN) for p in admins]
        self.set_acl(table_id, grants)
        logger.debug(
            f"Set ACL on {table_id}: {len(read_only)} read-only, {len(admins)} admin principals"
        )

        return table_id

    def set_acl(self, entity_id: str, grants: Sequence[AccessGrant]) -> None:
        """
        Set the access control list of an entity, overwriting any existing one.

        An existing ACL is updated in place with its current etag; otherwise
        a new ACL is created.
        """
        acl = AccessControlList(entity_id, list(grants))
        existing = self.get_acl_with_retry(entity_id)
        if existing is None:
            self.create_acl_with_retry(entity_id, acl.grants)
            return

        acl.etag = existing.etag
        self.update_acl_with_retry(acl)
        logger.info(f"Replaced existing ACL on {entity_id}")

    def safe_update_table(
        self,
        table_id: str,
        desired_columns: Sequence[ColumnDef],
        merge_deleted_fields: bool = False,
    ) -> Optional[SchemaChangeResponse]:
        """
        Update a table's columns, refusing any change that would lose data.

        Args:
            table_id: Table to update
            desired_columns: Desired columns, in desired order
            merge_deleted_fields: Keep live columns that are missing from
                ``desired_columns`` instead of rejecting the update. This
                argument decides, whatever the helper's reconciler was built with.

        Returns:
            The schema change response, or None if no change was needed

        Raises:
            SchemaRejectedError: If columns would be deleted or
                incompatibly modified. Nothing is written.
        """
        live_columns = self.get_columns_for_table_with_retry(table_id)

        reconciler = self.reconciler
        if reconciler.merge_deleted_fields != merge_deleted_fields:
            reconciler = reconciler.with_merge_deleted_fields(merge_deleted_fields)

        result = reconciler.reconcile(live_columns, desired_columns, table_id)
        if not result.requires_remote_change:
            return None

        created = self.create_columns_with_retry(result.desired_columns)
        if len(created) != len(result.desired_columns):
            raise ColumnCountMismatchError(table_id, len(result.desired_columns), len(created))

        changes, ordered_ids = build_column_changes(live_columns, created)
        return self.update_table_columns(table_id, changes, ordered_ids)

    def update_table_columns(
        self,
        table_id: str,
        changes: List[ColumnChange],
        ordered_column_ids: List[str],
    ) -> SchemaChangeResponse:
        """
        Submit one schema change job and wait for its result.

        Raises:
            UnexpectedResultError: If the job did not return exactly one
                schema change response
            AsyncJobTimeoutError: If the job did not finish within the poll budget
        """
        responses = self.poller.run(
            JobKind.SCHEMA_CHANGE,
            table_id,
            start=lambda: self.start_schema_change_with_retry(table_id, changes, ordered_column_ids),
            poll=lambda token: self.get_schema_change_result_with_retry(token, table_id),
        )

        if responses is None or len(responses) != 1:
            count = 0 if responses is None else len(responses)
            raise UnexpectedResultError(
                f"Expected one schema change response for table {table_id}, got {count}"
            )

        logger.info(f"Updated columns of table {table_id}: {len(changes)} column changes")
        return responses[0]

    # ------------------------------------------------------------------
    # Rows
    # ------------------------------------------------------------------

    def upload_tsv_file_to_table(self, table_id: str, path: Union[str, Path]) -> int:
        """
        Upload a tab-separated file with a header line into a table.

        Returns:
            Number of rows processed

        Raises:
            MissingResultError: If the import finished without a row count
            AsyncJobTimeoutError: If the import did not finish within the poll budget
        """
        file_handle_id = self.upload_file_with_retry(path)
        logger.debug(f"Uploaded {path} as file handle {file_handle_id}")

        result = self.poller.run(
            JobKind.TSV_UPLOAD,
            table_id,
            start=lambda: self.start_tsv_import_with_retry(table_id, file_handle_id),
            poll=lambda token: self.get_tsv_import_status_with_retry(token, table_id),
        )

        if result is None or result.rows_processed is None:
            raise MissingResultError(f"TSV import into table {table_id} returned no row count")

        logger.info(f"Imported {result.rows_processed} rows into table {table_id}")
        return result.rows_processed

    def append_rows_to_table(self, table_id: str, row_set: RowSet) -> RowReferenceSet:
        """Append rows to a table and wait for the row references."""
        result = self.poller.run(
            JobKind.ROW_APPEND,
            table_id,
            start=lambda: self.start_append_with_retry(table_id, row_set),
            poll=lambda token: self.get_append_result_with_retry(token, table_id),
        )

        if result is None:
            raise MissingResultError(f"Row append to table {table_id} returned no row references")

        logger.info(f"Appended {len(result)} rows to table {table_id}")
        return result

    # ------------------------------------------------------------------
    # Folders and service status
    # ------------------------------------------------------------------

    def create_folder_if_not_exists(self, parent_id: str, name: str) -> str:
        """
        Return the id of folder ``name`` under ``parent_id``, creating it if needed.

        The lookup and create are retried together, so a folder created by
        a failed attempt is found by the next one.
        """

        def lookup_or_create() -> str:
            folder_id = self._call(Bucket.GENERAL, None, self.client.lookup_child, parent_id, name)
            if folder_id is not None:
                return folder_id
            folder_id = self._call(Bucket.GENERAL, None, self.client.create_folder, parent_id, name)
            logger.info(f"Created folder {name} ({folder_id}) under {parent_id}")
            return folder_id

        lookup_or_create.__name__ = f"create_folder_if_not_exists({name})"
        return self.folder_policy.call(lookup_or_create, sleep=self._sleep)

    def is_writable(self) -> bool:
        """True if the remote service currently accepts writes."""
        status = self.get_stack_status_with_retry()
        return status == StackStatus.READ_WRITE

    def check_writable_or_raise(self) -> None:
        """
        Raises:
            ServiceUnavailableError: If the remote service is not writable
        """
        status = self.get_stack_status_with_retry()
        if status != StackStatus.READ_WRITE:
            raise ServiceUnavailableError(
                f"Remote service is not writable (status {status.value})",
                {"status": status.value},
            )
