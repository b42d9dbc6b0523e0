"""Unit tests for docvault.engine.errors — Error hierarchy & serialization."""

import json
import pytest

from docvault.engine.errors import (
    ConflictError,
    DocVaultError,
    ForbiddenError,
    InvalidCriteriaError,
    NotFoundError,
    StorageFailureError,
)


class TestDocVaultError:
    """Base error class tests."""

    def test_basic_creation(self):
        err = DocVaultError("something broke")
        assert err.message == "something broke"
        assert str(err) == "something broke"
        assert err.error_type == "DocVaultError"
        assert err.kind == "error"
        assert err.resource_type is None
        assert err.resource_id is None

    def test_context_fields(self):
        err = DocVaultError("fail", resource_type="document", resource_id=7, extra="x")
        assert err.resource_type == "document"
        assert err.resource_id == 7
        assert err.context["extra"] == "x"

    def test_to_dict(self):
        err = DocVaultError("fail", resource_type="tag", resource_id=1, name="a")
        d = err.to_dict()
        assert d["kind"] == "error"
        assert d["error_type"] == "DocVaultError"
        assert d["message"] == "fail"
        assert d["resource_type"] == "tag"
        assert d["resource_id"] == 1
        assert d["context"] == {"name": "a"}
        assert "timestamp" in d

    def test_to_json(self):
        parsed = json.loads(DocVaultError("fail").to_json())
        assert parsed["error_type"] == "DocVaultError"
        assert parsed["message"] == "fail"

    def test_repr(self):
        err = DocVaultError("fail", resource_type="document", resource_id=3)
        assert repr(err) == "DocVaultError: fail | resource=document:3"


class TestErrorKinds:
    @pytest.mark.parametrize("cls,kind", [
        (NotFoundError, "not_found"),
        (ForbiddenError, "forbidden"),
        (ConflictError, "conflict"),
        (InvalidCriteriaError, "invalid_criteria"),
        (StorageFailureError, "storage_failure"),
    ])
    def test_kind_and_hierarchy(self, cls, kind):
        err = cls("boom")
        assert isinstance(err, DocVaultError)
        assert err.kind == kind
        assert err.to_dict()["kind"] == kind

    def test_catchable_as_base(self):
        with pytest.raises(DocVaultError):
            raise NotFoundError("gone", resource_type="document", resource_id=9)


class TestForbiddenError:
    def test_requester_and_level(self):
        err = ForbiddenError("denied", requester_id=4, required_level="write")
        assert err.requester_id == 4
        assert err.required_level == "write"
        d = err.to_dict()
        assert d["requester_id"] == 4
        assert d["required_level"] == "write"


class TestInvalidCriteriaError:
    def test_field(self):
        err = InvalidCriteriaError("bad", field="tag_ids")
        assert err.field == "tag_ids"
        assert err.to_dict()["field"] == "tag_ids"


class TestStorageFailureError:
    def test_operation(self):
        err = StorageFailureError("db down", operation="redeem")
        assert err.operation == "redeem"
        assert err.to_dict()["context"]["operation"] == "redeem"
