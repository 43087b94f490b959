"""
Declarative table schema descriptions.

Callers describe the columns they want explicitly, as a mapping, a YAML
file, or through SchemaBuilder. The reconciler and helper only ever see
the resulting ColumnDef list.
"""

from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Union

import yaml

from ..exceptions import ConfigurationError, SchemaDefinitionError
from ..remote.models import ColumnDef, ColumnType


DEFAULT_STRING_MAX_LENGTH = 100


class TableSchema:
    """An ordered, name-unique list of columns, optionally bound to a remote table."""

    def __init__(
        self,
        columns: Sequence[ColumnDef],
        name: Optional[str] = None,
        table_id: Optional[str] = None,
    ):
        seen = set()
        for column in columns:
            if column.name in seen:
                raise SchemaDefinitionError(f"Duplicate column name '{column.name}'")
            seen.add(column.name)

        self._columns = list(columns)
        self.name = name
        self.table_id = table_id

    @property
    def columns(self) -> List[ColumnDef]:
        return list(self._columns)

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self._columns]

    def get(self, name: str) -> Optional[ColumnDef]:
        for column in self._columns:
            if column.name == name:
                return column
        return None

    def __iter__(self) -> Iterator[ColumnDef]:
        return iter(self._columns)

    def __len__(self) -> int:
        return len(self._columns)

    def __contains__(self, name: object) -> bool:
        return any(c.name == name for c in self._columns)

    def __repr__(self) -> str:
        return f"TableSchema(name={self.name!r}, columns={self.column_names})"

    @classmethod
    def from_mapping(
        cls,
        columns: Union[Mapping[str, Any], Sequence[Mapping[str, Any]]],
        name: Optional[str] = None,
        table_id: Optional[str] = None,
    ) -> "TableSchema":
        """
        Build a schema from plain data.

        Accepts either an ordered mapping of column name to spec, where the
        spec is a type name or a dict with ``type`` and ``max_length``::

            {"record_id": {"type": "STRING", "max_length": 36}, "score": "DOUBLE"}

        or a list of dicts each carrying a ``name`` key.
        """
        if isinstance(columns, Mapping):
            items = [(col_name, spec) for col_name, spec in columns.items()]
        else:
            items = []
            for entry in columns:
                if "name" not in entry:
                    raise SchemaDefinitionError(f"Column entry without a name: {entry}")
                items.append((entry["name"], entry))

        return cls([_column_from_spec(col_name, spec) for col_name, spec in items], name, table_id)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "TableSchema":
        """
        Load a schema from a YAML file with ``name``, optional ``table_id``
        and ``columns`` keys.
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except FileNotFoundError:
            raise ConfigurationError(f"Schema file not found: {path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in schema file: {e}")

        if not isinstance(data, dict) or "columns" not in data:
            raise ConfigurationError(f"Schema file {path} must define 'columns'")

        return cls.from_mapping(data["columns"], name=data.get("name"), table_id=data.get("table_id"))

    def to_mapping(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.name:
            data["name"] = self.name
        if self.table_id:
            data["table_id"] = self.table_id
        data["columns"] = []
        for column in self._columns:
            entry: Dict[str, Any] = {"name": column.name, "type": column.column_type.value}
            if column.max_length is not None:
                entry["max_length"] = column.max_length
            data["columns"].append(entry)
        return data


def _column_from_spec(name: str, spec: Any) -> ColumnDef:
    if isinstance(spec, str):
        spec = {"type": spec}
    if not isinstance(spec, Mapping) or "type" not in spec:
        raise SchemaDefinitionError(f"Column {name} needs a type")

    try:
        column_type = ColumnType(str(spec["type"]).upper())
    except ValueError:
        raise SchemaDefinitionError(f"Column {name} has unknown type {spec['type']}")

    max_length = spec.get("max_length")
    if max_length is None and column_type.is_string_like:
        max_length = DEFAULT_STRING_MAX_LENGTH
    if max_length is not None:
        max_length = int(max_length)
        if max_length <= 0:
            raise SchemaDefinitionError(f"Column {name} max_length must be positive")

    return ColumnDef(name=name, column_type=column_type, max_length=max_length)


class SchemaBuilder:
    """
    Fluent builder for TableSchema.

    Example::

        schema = (
            SchemaBuilder("survey_results")
            .string("record_id", max_length=36)
            .date("created_on")
            .double("score")
            .build()
        )
    """

    def __init__(self, name: Optional[str] = None):
        self.name = name
        self._columns: List[ColumnDef] = []

    def column(
        self, name: str, column_type: ColumnType, max_length: Optional[int] = None
    ) -> "SchemaBuilder":
        if max_length is None and column_type.is_string_like:
            max_length = DEFAULT_STRING_MAX_LENGTH
        self._columns.append(ColumnDef(name=name, column_type=column_type, max_length=max_length))
        return self

    def string(self, name: str, max_length: Optional[int] = None) -> "SchemaBuilder":
        return self.column(name, ColumnType.STRING, max_length)

    def large_text(self, name: str) -> "SchemaBuilder":
        return self.column(name, ColumnType.LARGETEXT)

    def integer(self, name: str) -> "SchemaBuilder":
        return self.column(name, ColumnType.INTEGER)

    def double(self, name: str) -> "SchemaBuilder":
        return self.column(name, ColumnType.DOUBLE)

    def date(self, name: str) -> "SchemaBuilder":
        return self.column(name, ColumnType.DATE)

    def boolean(self, name: str) -> "SchemaBuilder":
        return self.column(name, ColumnType.BOOLEAN)

    def file_handle(self, name: str) -> "SchemaBuilder":
        return self.column(name, ColumnType.FILEHANDLEID)

    def build(self, table_id: Optional[str] = None) -> TableSchema:
        return TableSchema(self._columns, name=self.name, table_id=table_id)
