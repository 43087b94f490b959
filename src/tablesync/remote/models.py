"""
Data model for the remote table service boundary.

These are the typed values exchanged with a RemoteTableClient: column
definitions, schema change records, access grants, row sets and the
three-way poll result used by the async job protocol.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

from ..exceptions import SchemaDefinitionError, UnexpectedResultError


T = TypeVar("T")


class ColumnType(str, Enum):
    """Column types supported by the remote table service."""

    INTEGER = "INTEGER"
    DOUBLE = "DOUBLE"
    STRING = "STRING"
    LARGETEXT = "LARGETEXT"
    DATE = "DATE"
    BOOLEAN = "BOOLEAN"
    FILEHANDLEID = "FILEHANDLEID"
    ENTITYID = "ENTITYID"
    LINK = "LINK"
    USERID = "USERID"
    MEDIUMTEXT = "MEDIUMTEXT"
    JSON = "JSON"
    EVALUATIONID = "EVALUATIONID"
    SUBMISSIONID = "SUBMISSIONID"
    STRING_LIST = "STRING_LIST"
    INTEGER_LIST = "INTEGER_LIST"
    BOOLEAN_LIST = "BOOLEAN_LIST"
    DATE_LIST = "DATE_LIST"
    ENTITYID_LIST = "ENTITYID_LIST"
    USERID_LIST = "USERID_LIST"

    @property
    def is_string_like(self) -> bool:
        """Whether max length is meaningful for this type."""
        return self in (ColumnType.STRING, ColumnType.LINK)


@dataclass(frozen=True)
class ColumnDef:
    """A single column definition, local or remote."""

    name: str
    column_type: ColumnType
    max_length: Optional[int] = None
    remote_id: Optional[str] = None

    def __post_init__(self):
        # Accept plain strings, e.g. from YAML or JSON payloads
        if not isinstance(self.column_type, ColumnType):
            try:
                column_type = ColumnType(str(self.column_type).upper())
            except ValueError:
                raise SchemaDefinitionError(
                    f"Column {self.name} has unknown type {self.column_type}"
                )
            object.__setattr__(self, "column_type", column_type)

    def with_remote_id(self, remote_id: Optional[str]) -> "ColumnDef":
        """Return a copy bound to a remote column id."""
        return replace(self, remote_id=remote_id)

    def same_definition(self, other: "ColumnDef") -> bool:
        """Compare name, type and max length, ignoring the remote id."""
        return (
            self.name == other.name
            and self.column_type == other.column_type
            and self.max_length == other.max_length
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name, "columnType": self.column_type.value}
        if self.max_length is not None:
            data["maximumSize"] = self.max_length
        if self.remote_id is not None:
            data["id"] = self.remote_id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ColumnDef":
        max_length = data.get("maximumSize")
        try:
            column_type = ColumnType(data["columnType"])
        except ValueError:
            raise UnexpectedResultError(
                f"Column {data.get('name')} has unsupported type {data['columnType']}",
                {"column": data},
            )
        return cls(
            name=data["name"],
            column_type=column_type,
            max_length=int(max_length) if max_length is not None else None,
            remote_id=data.get("id"),
        )

    def __str__(self) -> str:
        result = f"{self.name} {self.column_type.value}"
        if self.max_length is not None:
            result += f"({self.max_length})"
        return result


@dataclass(frozen=True)
class ColumnChange:
    """
    One column replacement in a schema change job.

    An absent old_remote_id means the column is a pure addition.
    """

    new_remote_id: str
    old_remote_id: Optional[str] = None

    @property
    def is_addition(self) -> bool:
        return self.old_remote_id is None

    def to_dict(self) -> Dict[str, Any]:
        return {"oldColumnId": self.old_remote_id, "newColumnId": self.new_remote_id}


class Permission(str, Enum):
    """Permission sets that can be granted on a table."""

    READ_ONLY = "read_only"
    ADMIN = "admin"

    @property
    def access_types(self) -> List[str]:
        return list(ACCESS_TYPES[self])


# Access types granted per permission set. ADMIN mirrors the remote
# service's entity admin permission set.
ACCESS_TYPES = {
    Permission.READ_ONLY: ("READ", "DOWNLOAD"),
    Permission.ADMIN: (
        "READ",
        "DOWNLOAD",
        "UPDATE",
        "DELETE",
        "CREATE",
        "CHANGE_PERMISSIONS",
        "CHANGE_SETTINGS",
        "MODERATE",
    ),
}


@dataclass(frozen=True)
class AccessGrant:
    """Grants one permission set to one principal (user or team)."""

    principal_id: str
    permission: Permission

    def to_dict(self) -> Dict[str, Any]:
        return {
            "principalId": int(self.principal_id) if self.principal_id.isdigit() else self.principal_id,
            "accessType": self.permission.access_types,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["AccessGrant"]:
        """Parse a resource access entry. None if it matches no permission set."""
        access_types = set(data.get("accessType") or [])
        for permission, granted in ACCESS_TYPES.items():
            if access_types == set(granted):
                return cls(str(data["principalId"]), permission)
        return None


@dataclass
class AccessControlList:
    """
    The access control list of an entity.

    An ACL read back from the service carries its etag, which must be sent
    with any update. Entries that match no permission set are left out.
    """

    entity_id: str
    grants: List[AccessGrant] = field(default_factory=list)
    etag: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.entity_id,
            "resourceAccess": [g.to_dict() for g in self.grants],
        }
        if self.etag is not None:
            data["etag"] = self.etag
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AccessControlList":
        grants = [AccessGrant.from_dict(entry) for entry in data.get("resourceAccess") or []]
        return cls(
            entity_id=str(data["id"]),
            grants=[g for g in grants if g is not None],
            etag=data.get("etag"),
        )


@dataclass
class TableEntity:
    """A table as known to the remote service."""

    name: str
    parent_id: str
    column_ids: List[str] = field(default_factory=list)
    remote_id: Optional[str] = None


@dataclass
class SchemaChangeResponse:
    """Result of a completed schema change job."""

    table_id: str
    columns: List[ColumnDef] = field(default_factory=list)


@dataclass
class UploadToTableResult:
    """Result of a completed delimited-text import job."""

    rows_processed: Optional[int]
    etag: Optional[str] = None


@dataclass
class RowSet:
    """A set of rows to append to a table."""

    headers: List[str]
    rows: List[List[Any]]

    def __len__(self) -> int:
        return len(self.rows)


@dataclass
class RowReferenceSet:
    """References to rows written by an append job."""

    table_id: str
    row_ids: List[int] = field(default_factory=list)
    etag: Optional[str] = None

    def __len__(self) -> int:
        return len(self.row_ids)


class StackStatus(str, Enum):
    """Operational status of the remote service."""

    READ_WRITE = "READ_WRITE"
    READ_ONLY = "READ_ONLY"
    DOWN = "DOWN"


class PollResult(Generic[T]):
    """
    Outcome of a single poll of an async job.

    Either ready with a value or not ready. A failed job is never a
    PollResult; the poll call raises instead.
    """

    __slots__ = ("_ready", "_value")

    def __init__(self, ready: bool, value: Optional[T] = None):
        self._ready = ready
        self._value = value

    @classmethod
    def ready(cls, value: T) -> "PollResult[T]":
        return cls(True, value)

    @classmethod
    def not_ready(cls) -> "PollResult[T]":
        return cls(False)

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def value(self) -> T:
        if not self._ready:
            raise ValueError("Poll result is not ready")
        return self._value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PollResult):
            return NotImplemented
        return self._ready == other._ready and self._value == other._value

    def __repr__(self) -> str:
        if self._ready:
            return f"PollResult.ready({self._value!r})"
        return "PollResult.not_ready()"
