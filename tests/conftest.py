"""
Pytest configuration and shared fixtures for tablesync tests.

This module provides an in-memory remote table service, a fake clock and
shared configuration used across the test suite.
"""

import itertools
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import pytest
import yaml

from tablesync.config import TableSyncConfig
from tablesync.helper import TableServiceHelper
from tablesync.remote.base import RemoteTableClient
from tablesync.exceptions import RemoteRequestError
from tablesync.remote.models import (
    AccessControlList,
    AccessGrant,
    ColumnChange,
    ColumnDef,
    ColumnType,
    PollResult,
    RowReferenceSet,
    RowSet,
    SchemaChangeResponse,
    StackStatus,
    TableEntity,
    UploadToTableResult,
)
from tablesync.resilience.rate_gate import RateGate


# ============================================================================
# Fake clock
# ============================================================================

class FakeClock:
    """Monotonic clock whose sleep() advances time instantly and records the wait."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


# ============================================================================
# In-memory remote table service
# ============================================================================

class FakeRemoteClient(RemoteTableClient):
    """
    In-memory stand-in for the remote table service.

    Every call is recorded in ``calls``. Failures can be scripted per
    method through ``failures`` (exceptions raised on successive calls),
    and poll answers through ``poll_results`` (PollResults returned before
    the job completes normally).
    """

    WRITE_METHODS = {
        "create_columns",
        "create_table",
        "create_acl",
        "update_acl",
        "start_schema_change_job",
        "upload_file",
        "start_tsv_import_job",
        "start_append_job",
        "create_folder",
    }

    def __init__(self):
        super().__init__()
        self.calls: List[Tuple[str, tuple]] = []
        self.failures: Dict[str, List[Exception]] = {}
        self.poll_results: Dict[str, List[PollResult]] = {}

        self._ids = itertools.count(1)
        self.column_ids: Dict[Tuple[str, ColumnType, Optional[int]], str] = {}
        self.columns_by_id: Dict[str, ColumnDef] = {}
        self.tables: Dict[str, TableEntity] = {}
        self.acls: Dict[str, List[AccessGrant]] = {}
        self.acl_etags: Dict[str, str] = {}
        self.folders: Dict[Tuple[str, str], str] = {}
        self.jobs: Dict[str, Tuple[str, Any]] = {}
        self.uploaded: Dict[str, str] = {}

        self.stack_status = StackStatus.READ_WRITE
        self.create_columns_limit: Optional[int] = None
        self.tsv_rows: Optional[int] = None

    def _record(self, method: str, *args) -> None:
        self.calls.append((method, args))
        pending = self.failures.get(method)
        if pending:
            raise pending.pop(0)

    def _next_id(self, prefix: str = "") -> str:
        return f"{prefix}{next(self._ids)}"

    def call_names(self) -> List[str]:
        return [name for name, _ in self.calls]

    def write_calls(self) -> List[str]:
        return [name for name in self.call_names() if name in self.WRITE_METHODS]

    def add_table(self, columns: List[ColumnDef], name: str = "table") -> str:
        """Seed a table directly, bypassing the recorded API."""
        bound = [self._bind(c) for c in columns]
        table_id = self._next_id("syn")
        self.tables[table_id] = TableEntity(name, "syn0", [c.remote_id for c in bound], table_id)
        return table_id

    def _bind(self, column: ColumnDef) -> ColumnDef:
        # Identical definitions resolve to the same column id
        key = (column.name, column.column_type, column.max_length)
        if key not in self.column_ids:
            column_id = self._next_id()
            self.column_ids[key] = column_id
            self.columns_by_id[column_id] = column.with_remote_id(column_id)
        return self.columns_by_id[self.column_ids[key]]

    def live_columns(self, table_id: str) -> List[ColumnDef]:
        return [self.columns_by_id[i] for i in self.tables[table_id].column_ids]

    def _poll(self, method: str, token: str) -> Optional[PollResult]:
        scripted = self.poll_results.get(method)
        if scripted:
            return scripted.pop(0)
        return None

    # RemoteTableClient

    def create_columns(self, columns: List[ColumnDef]) -> List[ColumnDef]:
        self._record("create_columns", list(columns))
        bound = [self._bind(c) for c in columns]
        if self.create_columns_limit is not None:
            bound = bound[: self.create_columns_limit]
        return bound

    def create_table(self, name: str, parent_id: str, column_ids: List[str]) -> TableEntity:
        self._record("create_table", name, parent_id, list(column_ids))
        table_id = self._next_id("syn")
        table = TableEntity(name, parent_id, list(column_ids), table_id)
        self.tables[table_id] = table
        return table

    def create_acl(self, table_id: str, grants: List[AccessGrant]) -> None:
        self._record("create_acl", table_id, list(grants))
        if table_id in self.acls:
            raise RemoteRequestError(f"Entity {table_id} already has an ACL", status_code=403)
        self.acls[table_id] = list(grants)
        self.acl_etags[table_id] = self._next_id("acl-etag-")

    def get_acl(self, entity_id: str) -> Optional[AccessControlList]:
        self._record("get_acl", entity_id)
        if entity_id not in self.acls:
            return None
        return AccessControlList(entity_id, list(self.acls[entity_id]), self.acl_etags[entity_id])

    def update_acl(self, acl: AccessControlList) -> None:
        self._record("update_acl", acl)
        if acl.etag != self.acl_etags.get(acl.entity_id):
            raise RemoteRequestError(f"Stale etag for ACL of {acl.entity_id}", status_code=412)
        self.acls[acl.entity_id] = list(acl.grants)
        self.acl_etags[acl.entity_id] = self._next_id("acl-etag-")

    def add_acl(self, entity_id: str, grants: List[AccessGrant]) -> str:
        """Seed an existing ACL directly. Returns its etag."""
        self.acls[entity_id] = list(grants)
        self.acl_etags[entity_id] = self._next_id("acl-etag-")
        return self.acl_etags[entity_id]

    def get_columns(self, table_id: str) -> List[ColumnDef]:
        self._record("get_columns", table_id)
        return self.live_columns(table_id)

    def start_schema_change_job(
        self, table_id: str, changes: List[ColumnChange], ordered_column_ids: List[str]
    ) -> str:
        self._record("start_schema_change_job", table_id, list(changes), list(ordered_column_ids))
        token = self._next_id("job-")
        self.jobs[token] = (table_id, list(ordered_column_ids))
        return token

    def poll_schema_change_job(self, token: str, table_id: str) -> PollResult[List[SchemaChangeResponse]]:
        self._record("poll_schema_change_job", token, table_id)
        scripted = self._poll("poll_schema_change_job", token)
        if scripted is not None:
            return scripted
        _, ordered_ids = self.jobs[token]
        self.tables[table_id].column_ids = list(ordered_ids)
        return PollResult.ready([SchemaChangeResponse(table_id, self.live_columns(table_id))])

    def upload_file(self, path: Union[str, Path]) -> str:
        self._record("upload_file", str(path))
        handle = self._next_id("fh-")
        self.uploaded[handle] = Path(path).read_text()
        return handle

    def start_tsv_import_job(
        self, table_id: str, file_handle_id: str, has_header: bool = True, delimiter: str = "\t"
    ) -> str:
        self._record("start_tsv_import_job", table_id, file_handle_id, has_header, delimiter)
        token = self._next_id("job-")
        self.jobs[token] = (table_id, file_handle_id)
        return token

    def poll_tsv_import_job(self, token: str, table_id: str) -> PollResult[UploadToTableResult]:
        self._record("poll_tsv_import_job", token, table_id)
        scripted = self._poll("poll_tsv_import_job", token)
        if scripted is not None:
            return scripted
        if self.tsv_rows is not None:
            rows = self.tsv_rows
        else:
            _, handle = self.jobs[token]
            rows = len(self.uploaded[handle].splitlines()) - 1
        return PollResult.ready(UploadToTableResult(rows_processed=rows, etag="etag-1"))

    def start_append_job(self, table_id: str, row_set: RowSet) -> str:
        self._record("start_append_job", table_id, row_set)
        token = self._next_id("job-")
        self.jobs[token] = (table_id, row_set)
        return token

    def poll_append_job(self, token: str, table_id: str) -> PollResult[RowReferenceSet]:
        self._record("poll_append_job", token, table_id)
        scripted = self._poll("poll_append_job", token)
        if scripted is not None:
            return scripted
        _, row_set = self.jobs[token]
        return PollResult.ready(RowReferenceSet(table_id, list(range(1, len(row_set) + 1)), "etag-2"))

    def lookup_child(self, parent_id: str, name: str) -> Optional[str]:
        self._record("lookup_child", parent_id, name)
        return self.folders.get((parent_id, name))

    def create_folder(self, parent_id: str, name: str) -> str:
        self._record("create_folder", parent_id, name)
        folder_id = self._next_id("syn")
        self.folders[(parent_id, name)] = folder_id
        return folder_id

    def get_stack_status(self) -> StackStatus:
        self._record("get_stack_status")
        return self.stack_status


@pytest.fixture
def fake_client() -> FakeRemoteClient:
    return FakeRemoteClient()


# ============================================================================
# Configuration
# ============================================================================

@pytest.fixture
def sample_config_data() -> Dict[str, Any]:
    """Configuration with a small poll budget."""
    return {
        "service_name": "tablesync-test",
        "remote": {"base_url": "https://tables.example.org", "auth_token": "test-token"},
        "polling": {"interval_seconds": 1.0, "max_polls": 5},
    }


@pytest.fixture
def sample_config(sample_config_data) -> TableSyncConfig:
    return TableSyncConfig(**sample_config_data)


@pytest.fixture
def temp_config_file(tmp_path, sample_config_data) -> str:
    path = tmp_path / "tablesync-config.yaml"
    path.write_text(yaml.dump(sample_config_data))
    return str(path)


@pytest.fixture
def schema_file(tmp_path) -> str:
    path = tmp_path / "schema.yaml"
    path.write_text(
        yaml.dump(
            {
                "name": "survey_results",
                "columns": [
                    {"name": "record_id", "type": "STRING", "max_length": 36},
                    {"name": "score", "type": "DOUBLE"},
                    {"name": "created_on", "type": "DATE"},
                ],
            },
            sort_keys=False,
        )
    )
    return str(path)


# ============================================================================
# Helper
# ============================================================================

@pytest.fixture
def helper(fake_client, sample_config, fake_clock) -> TableServiceHelper:
    """TableServiceHelper over the fake client, never sleeping for real."""
    rate_gate = RateGate(
        general_per_second=sample_config.rate_limits.general_per_second,
        metadata_per_second=sample_config.rate_limits.metadata_per_second,
        clock=fake_clock,
        sleep=fake_clock.sleep,
    )
    return TableServiceHelper(
        fake_client, sample_config, rate_gate=rate_gate, sleep=fake_clock.sleep
    )


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo configure_logging() so caplog keeps seeing package records."""
    yield
    logger = logging.getLogger("tablesync")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
