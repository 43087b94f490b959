"""
Tests for tablesync.remote.models module.
"""

import pytest

from tablesync.exceptions import SchemaDefinitionError, UnexpectedResultError
from tablesync.remote.models import (
    AccessControlList,
    AccessGrant,
    ColumnChange,
    ColumnDef,
    ColumnType,
    Permission,
    PollResult,
)


class TestColumnDef:
    """Test ColumnDef."""

    def test_coerces_type_names(self):
        assert ColumnDef("a", "integer").column_type == ColumnType.INTEGER

    def test_coerces_list_type_names(self):
        assert ColumnDef("a", "string_list", 50).column_type == ColumnType.STRING_LIST

    def test_unknown_type_name(self):
        with pytest.raises(SchemaDefinitionError, match="unknown type"):
            ColumnDef("a", "geometry")

    def test_from_dict_unknown_type(self):
        with pytest.raises(UnexpectedResultError):
            ColumnDef.from_dict({"id": "1", "name": "a", "columnType": "GEOMETRY"})

    def test_with_remote_id(self):
        column = ColumnDef("a", ColumnType.STRING, 10)

        bound = column.with_remote_id("42")

        assert bound.remote_id == "42"
        assert column.remote_id is None
        assert bound.same_definition(column)
        assert bound != column

    def test_to_dict_omits_unset_fields(self):
        assert ColumnDef("a", ColumnType.DATE).to_dict() == {"name": "a", "columnType": "DATE"}

    def test_from_dict(self):
        column = ColumnDef.from_dict({"id": "7", "name": "a", "columnType": "STRING", "maximumSize": "50"})

        assert column == ColumnDef("a", ColumnType.STRING, 50, "7")
        assert str(column) == "a STRING(50)"

    def test_string_like_types(self):
        assert ColumnType.STRING.is_string_like
        assert ColumnType.LINK.is_string_like
        assert not ColumnType.LARGETEXT.is_string_like


class TestColumnChangeAndGrants:
    """Test ColumnChange and AccessGrant."""

    def test_addition(self):
        change = ColumnChange("9")

        assert change.is_addition
        assert change.to_dict() == {"oldColumnId": None, "newColumnId": "9"}

    def test_replacement(self):
        assert not ColumnChange("9", "3").is_addition

    def test_grant_numeric_principal(self):
        grant = AccessGrant("3342573", Permission.ADMIN)

        data = grant.to_dict()

        assert data["principalId"] == 3342573
        assert "MODERATE" in data["accessType"]

    def test_grant_from_dict(self):
        assert AccessGrant.from_dict({"principalId": 7, "accessType": ["DOWNLOAD", "READ"]}) == AccessGrant(
            "7", Permission.READ_ONLY
        )
        assert AccessGrant.from_dict({"principalId": 7, "accessType": ["READ"]}) is None

    def test_acl_to_dict(self):
        acl = AccessControlList("syn1", [AccessGrant("7", Permission.READ_ONLY)])

        assert "etag" not in acl.to_dict()
        acl.etag = "e1"
        assert acl.to_dict()["etag"] == "e1"


class TestPollResult:
    """Test PollResult."""

    def test_ready(self):
        result = PollResult.ready([1, 2])

        assert result.is_ready
        assert result.value == [1, 2]
        assert repr(result) == "PollResult.ready([1, 2])"

    def test_ready_with_none(self):
        assert PollResult.ready(None).is_ready

    def test_not_ready(self):
        result = PollResult.not_ready()

        assert not result.is_ready
        assert result == PollResult.not_ready()
        with pytest.raises(ValueError):
            result.value
