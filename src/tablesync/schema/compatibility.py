"""
Column compatibility policy.

Decides whether an existing remote column can be reinterpreted under a new
definition without losing stored values.
"""

from typing import Dict, FrozenSet, Optional

from ..exceptions import SchemaConsistencyError
from ..remote.models import ColumnDef, ColumnType


# Allowed type changes, old type -> new types.
#
# Booleans are stored as 0/1 and dates as epoch milliseconds, so converting
# either to a string leaves old values numeric while new values are
# "true"/"false" or ISO8601. Bool to numeric is blocked for the same reason.
# Nothing converts to LARGETEXT.
ALLOWED_TYPE_CHANGES: Dict[ColumnType, FrozenSet[ColumnType]] = {
    # More precision is fine, less is not
    ColumnType.INTEGER: frozenset({ColumnType.DOUBLE, ColumnType.DATE, ColumnType.STRING}),
    # Epoch millis. Float back to date loses data.
    ColumnType.DATE: frozenset({ColumnType.INTEGER, ColumnType.DOUBLE}),
    ColumnType.DOUBLE: frozenset({ColumnType.STRING}),
}

# Longest rendering of a numeric value once converted to a string column.
# Dates and booleans are absent on purpose, see above.
DEFAULT_MAX_LENGTH: Dict[ColumnType, int] = {
    # Empirically the longest float rendering
    ColumnType.DOUBLE: 22,
    # Signed 64-bit integer
    ColumnType.INTEGER: 20,
}


def is_allowed_type_change(old_type: ColumnType, new_type: ColumnType) -> bool:
    """True if ``old_type`` may become ``new_type``. Same type is always allowed."""
    if old_type == new_type:
        return True
    return new_type in ALLOWED_TYPE_CHANGES.get(old_type, frozenset())


def effective_max_length(column: ColumnDef) -> Optional[int]:
    """Explicit max length if set, else the type's default ceiling, else None."""
    if column.max_length is not None:
        return column.max_length
    return DEFAULT_MAX_LENGTH.get(column.column_type)


def is_compatible(old_column: ColumnDef, new_column: ColumnDef) -> bool:
    """
    Returns True if the old column can be converted to the new column
    without data loss.

    Remote ids are ignored: live columns carry them, desired columns
    usually don't.

    Raises:
        SchemaConsistencyError: If a string-like column has no discoverable
            max length. This is an internal inconsistency, not an ordinary
            incompatibility.
    """
    if not is_allowed_type_change(old_column.column_type, new_column.column_type):
        return False

    # String-like columns may grow but never shrink
    if new_column.column_type.is_string_like and old_column.max_length != new_column.max_length:
        old_max_length = effective_max_length(old_column)
        if old_max_length is None:
            raise SchemaConsistencyError(
                f"old column {old_column.name} has type {old_column.column_type.value} "
                f"and no max length"
            )
        if new_column.max_length is None:
            raise SchemaConsistencyError(
                f"new column {new_column.name} has type {new_column.column_type.value} "
                f"and no max length"
            )
        if new_column.max_length < old_max_length:
            return False

    if old_column.name != new_column.name:
        return False

    return True


def is_modified(old_column: ColumnDef, new_column: ColumnDef) -> bool:
    """True if type or max length differ."""
    return (
        old_column.column_type != new_column.column_type
        or old_column.max_length != new_column.max_length
    )
