"""
Schema reconciliation core logic for tablesync.

Compares a table's live columns with a desired column list, classifies the
difference, and rejects anything that would lose data: dropped columns and
incompatible modifications. Reconciliation is pure; it never calls the
remote service. TableServiceHelper applies an accepted result.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Set, Tuple

from ..exceptions import SchemaDefinitionError, SchemaRejectedError
from ..remote.models import ColumnChange, ColumnDef
from .compatibility import is_compatible, is_modified


logger = logging.getLogger(__name__)


class ReconciliationStatus(str, Enum):
    """Outcome of a reconciliation."""

    UNCHANGED = "unchanged"
    CHANGES_REQUIRED = "changes_required"
    REJECTED = "rejected"


@dataclass
class SchemaDiff:
    """Classification of live vs desired columns, by name."""

    added: Set[str] = field(default_factory=set)
    deleted: Set[str] = field(default_factory=set)
    kept: Dict[str, Tuple[ColumnDef, ColumnDef]] = field(default_factory=dict)
    modified: Set[str] = field(default_factory=set)
    incompatible: Set[str] = field(default_factory=set)

    @property
    def is_destructive(self) -> bool:
        return bool(self.deleted or self.incompatible)

    @property
    def has_changes(self) -> bool:
        """True if any column was added or modified."""
        return bool(self.added or self.modified)


@dataclass
class ReconciliationResult:
    """Result of reconciling one table's schema."""

    status: ReconciliationStatus
    diff: SchemaDiff
    desired_columns: List[ColumnDef]
    table_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status != ReconciliationStatus.REJECTED

    @property
    def requires_remote_change(self) -> bool:
        return self.status == ReconciliationStatus.CHANGES_REQUIRED


def index_by_name(columns: Sequence[ColumnDef], label: str = "column list") -> Dict[str, ColumnDef]:
    """Index columns by name, preserving order. Duplicate names are a caller error."""
    indexed: Dict[str, ColumnDef] = {}
    duplicates = []
    for column in columns:
        if column.name in indexed:
            duplicates.append(column.name)
        indexed[column.name] = column
    if duplicates:
        raise SchemaDefinitionError(
            f"Duplicate column names in {label}: {', '.join(sorted(set(duplicates)))}"
        )
    return indexed


def build_column_changes(
    live_columns: Sequence[ColumnDef],
    created_columns: Sequence[ColumnDef],
) -> Tuple[List[ColumnChange], List[str]]:
    """
    Build the schema change payload.

    Args:
        live_columns: Columns currently on the table, with remote ids
        created_columns: Desired columns in desired order, with remote ids

    Returns:
        (column changes, ordered column ids). Columns whose remote id did
        not change are left out of the changes but kept in the order.
    """
    live_by_name = {c.name: c for c in live_columns}
    changes: List[ColumnChange] = []
    ordered_ids: List[str] = []

    for created in created_columns:
        if created.remote_id is None:
            raise SchemaDefinitionError(f"Column {created.name} has no remote id")

        existing = live_by_name.get(created.name)
        existing_id = existing.remote_id if existing is not None else None
        if created.remote_id != existing_id:
            changes.append(ColumnChange(new_remote_id=created.remote_id, old_remote_id=existing_id))

        ordered_ids.append(created.remote_id)

    return changes, ordered_ids


class SchemaReconciler:
    """
    Decides whether a desired column list can safely replace a live one.

    Stateless aside from its merge setting; one instance can be shared
    between threads and tables.
    """

    def __init__(self, merge_deleted_fields: bool = False):
        """
        Args:
            merge_deleted_fields: If True, live columns missing from the
                desired list are appended to it instead of rejecting the
                change. Columns are never dropped either way.
        """
        self.merge_deleted_fields = merge_deleted_fields

    def with_merge_deleted_fields(self, merge_deleted_fields: bool) -> "SchemaReconciler":
        """Return a reconciler like this one with the given merge setting."""
        return self.__class__(merge_deleted_fields=merge_deleted_fields)

    def diff(
        self,
        live_columns: Sequence[ColumnDef],
        desired_columns: Sequence[ColumnDef],
    ) -> SchemaDiff:
        """Classify the difference without raising on destructive changes."""
        live_by_name = index_by_name(live_columns, "live columns")
        desired_by_name = index_by_name(desired_columns, "desired columns")

        result = SchemaDiff(
            added={name for name in desired_by_name if name not in live_by_name},
            deleted={name for name in live_by_name if name not in desired_by_name},
        )

        for name, desired in desired_by_name.items():
            live = live_by_name.get(name)
            if live is None:
                continue
            result.kept[name] = (live, desired)

            # Compare type and max length only. Desired columns have no remote ids.
            if not is_modified(live, desired):
                continue
            result.modified.add(name)
            if not is_compatible(live, desired):
                result.incompatible.add(name)

        return result

    def reconcile(
        self,
        live_columns: Sequence[ColumnDef],
        desired_columns: Sequence[ColumnDef],
        table_id: Optional[str] = None,
    ) -> ReconciliationResult:
        """
        Reconcile live columns against desired columns.

        Returns:
            ReconciliationResult. ``desired_columns`` on the result is the
            final column list to apply, including merged deleted columns.

        Raises:
            SchemaRejectedError: If columns would be deleted or incompatibly
                modified. Nothing has been applied; the request must change.
            SchemaConsistencyError: If column metadata is inconsistent
            SchemaDefinitionError: If either list has duplicate names
        """
        result = self.check(live_columns, desired_columns, table_id)
        if not result.ok:
            raise SchemaRejectedError(table_id, result.diff.deleted, result.diff.incompatible)
        return result

    def check(
        self,
        live_columns: Sequence[ColumnDef],
        desired_columns: Sequence[ColumnDef],
        table_id: Optional[str] = None,
    ) -> ReconciliationResult:
        """Like reconcile(), but reports a rejection as a REJECTED result instead of raising."""
        desired = list(desired_columns)
        diff = self.diff(live_columns, desired)
        label = table_id or "<unsaved>"

        if diff.deleted and self.merge_deleted_fields:
            merged = [c for c in live_columns if c.name in diff.deleted]
            logger.info(
                f"Table {label} keeps columns missing from the new schema: "
                f"{', '.join(c.name for c in merged)}"
            )
            desired.extend(merged)
            diff = self.diff(live_columns, desired)

        if diff.deleted:
            logger.error(f"Table {label} has deleted columns: {', '.join(sorted(diff.deleted))}")
        if diff.incompatible:
            logger.error(
                f"Table {label} has incompatible modified columns: "
                f"{', '.join(sorted(diff.incompatible))}"
            )
        if diff.is_destructive:
            status = ReconciliationStatus.REJECTED
        elif not diff.has_changes:
            logger.info(f"No schema changes needed for table {label}")
            status = ReconciliationStatus.UNCHANGED
        else:
            logger.info(
                f"Table {label} schema changes: added={sorted(diff.added)}, "
                f"modified={sorted(diff.modified)}"
            )
            status = ReconciliationStatus.CHANGES_REQUIRED

        return ReconciliationResult(
            status=status,
            diff=diff,
            desired_columns=desired,
            table_id=table_id,
        )
