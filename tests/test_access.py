"""Unit tests for docvault.security.access — Access rules, evaluator, grants."""

from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from docvault.db.models import Document, User
from docvault.engine.errors import (
    ForbiddenError,
    InvalidCriteriaError,
    NotFoundError,
    StorageFailureError,
)
from docvault.security.access import (
    DENY_ALL,
    AccessDecision,
    AccessPolicyEvaluator,
    PermissionLevel,
    hash_password,
    resolve_access,
    verify_password,
)


def _doc(owner_id=3, is_public=False, id=7):
    return Document(id=id, owner_id=owner_id, is_public=is_public)


class TestPermissionLevel:
    def test_ordering(self):
        assert PermissionLevel.ADMIN.covers(PermissionLevel.WRITE)
        assert PermissionLevel.WRITE.covers(PermissionLevel.READ)
        assert not PermissionLevel.READ.covers(PermissionLevel.WRITE)

    def test_from_string(self):
        assert PermissionLevel("admin") is PermissionLevel.ADMIN


class TestResolveAccess:
    """Pure rule evaluation, no database involved."""

    def test_public_readable_by_anonymous(self):
        decision = resolve_access(_doc(is_public=True), None)
        assert decision == AccessDecision(can_read=True)

    def test_private_hidden_from_anonymous(self):
        assert resolve_access(_doc(), None) == DENY_ALL

    def test_owner_gets_everything(self):
        decision = resolve_access(_doc(owner_id=3), 3)
        assert decision == AccessDecision(True, True, True, True)

    def test_no_grant_denies(self):
        assert resolve_access(_doc(), 4) == DENY_ALL

    @pytest.mark.parametrize("level,expected", [
        (PermissionLevel.READ, (True, False, False)),
        (PermissionLevel.WRITE, (True, True, False)),
        (PermissionLevel.ADMIN, (True, True, True)),
    ])
    def test_grant_hierarchy(self, level, expected):
        decision = resolve_access(_doc(), 4, level)
        assert (decision.can_read, decision.can_write, decision.can_admin) == expected
        assert decision.is_owner is False

    def test_public_with_write_grant(self):
        decision = resolve_access(_doc(is_public=True), 4, PermissionLevel.WRITE)
        assert decision.can_read and decision.can_write and not decision.can_admin

    def test_allows(self):
        decision = AccessDecision(can_read=True, can_write=True)
        assert decision.allows(PermissionLevel.READ)
        assert decision.allows(PermissionLevel.WRITE)
        assert not decision.allows(PermissionLevel.ADMIN)


class TestAccessPolicyEvaluator:
    def test_scenario_grant_read_to_requester(self, session, doc):
        document = doc(id=7, owner_id=3, is_public=False)
        evaluator = AccessPolicyEvaluator(session)
        assert evaluator.evaluate(document, 4).can_read is False

        evaluator.grant(7, 4, PermissionLevel.READ, granted_by=3)
        decision = evaluator.evaluate(document, 4)
        assert decision.can_read is True
        assert decision.can_write is False

    def test_grants_are_reread_every_call(self, session, doc):
        document = doc(id=7)
        evaluator = AccessPolicyEvaluator(session)
        evaluator.grant(7, 4, "write", granted_by=3)
        assert evaluator.evaluate(document, 4).can_write
        evaluator.revoke(7, 4)
        assert evaluator.evaluate(document, 4) == DENY_ALL

    def test_require_returns_decision(self, session, doc):
        document = doc(id=7)
        decision = AccessPolicyEvaluator(session).require(document, 3, PermissionLevel.ADMIN)
        assert decision.is_owner

    def test_require_raises_forbidden(self, session, doc):
        document = doc(id=7)
        evaluator = AccessPolicyEvaluator(session)
        evaluator.grant(7, 4, PermissionLevel.READ)
        with pytest.raises(ForbiddenError) as exc:
            evaluator.require(document, 4, PermissionLevel.WRITE)
        assert exc.value.kind == "forbidden"
        assert exc.value.required_level == "write"
        assert exc.value.requester_id == 4

    def test_require_anonymous_on_private(self, session, doc):
        document = doc(id=7)
        with pytest.raises(ForbiddenError):
            AccessPolicyEvaluator(session).require(document, None)


class TestGrantAdministration:
    def test_regrant_replaces_level(self, session, doc):
        doc(id=7)
        evaluator = AccessPolicyEvaluator(session)
        evaluator.grant(7, 4, PermissionLevel.READ, granted_by=3)
        evaluator.grant(7, 4, PermissionLevel.ADMIN, granted_by=3)
        grants = evaluator.list_grants(7)
        assert len(grants) == 1
        assert grants[0].level == PermissionLevel.ADMIN

    def test_grant_to_owner_rejected(self, session, doc):
        doc(id=7, owner_id=3)
        with pytest.raises(InvalidCriteriaError):
            AccessPolicyEvaluator(session).grant(7, 3, PermissionLevel.READ)

    def test_grant_on_missing_document(self, session, users):
        with pytest.raises(NotFoundError):
            AccessPolicyEvaluator(session).grant(99, 4, PermissionLevel.READ)

    def test_grant_on_deleted_document(self, session, doc):
        doc(id=7, is_deleted=True)
        with pytest.raises(NotFoundError):
            AccessPolicyEvaluator(session).grant(7, 4, PermissionLevel.READ)

    def test_grant_to_unknown_user(self, session, doc):
        doc(id=7)
        evaluator = AccessPolicyEvaluator(session)
        with pytest.raises(NotFoundError) as exc:
            evaluator.grant(7, 999, PermissionLevel.READ, granted_by=3)
        assert exc.value.resource_type == "user"
        assert exc.value.resource_id == 999
        # The session is still usable without a rollback
        evaluator.grant(7, 4, PermissionLevel.READ, granted_by=3)
        assert [g.grantee_id for g in evaluator.list_grants(7)] == [4]

    def test_failed_upsert_keeps_session_usable(self, session, doc):
        doc(id=7)
        evaluator = AccessPolicyEvaluator(session)
        real_get = session.get

        # A grantee removed between the lookup and the insert
        def stale_get(entity, ident, *args, **kwargs):
            if entity is User and ident == 999:
                return User(id=999, username="ghost")
            return real_get(entity, ident, *args, **kwargs)

        with patch.object(session, "get", side_effect=stale_get):
            with pytest.raises(StorageFailureError) as exc:
                evaluator.grant(7, 999, PermissionLevel.READ, granted_by=3)
        assert exc.value.operation == "grant"
        evaluator.grant(7, 5, PermissionLevel.WRITE, granted_by=3)
        assert [g.grantee_id for g in evaluator.list_grants(7)] == [5]

    def test_revoke_unknown_returns_false(self, session, doc):
        doc(id=7)
        assert AccessPolicyEvaluator(session).revoke(7, 4) is False

    def test_list_grants(self, session, doc):
        doc(id=7)
        evaluator = AccessPolicyEvaluator(session)
        evaluator.grant(7, 4, PermissionLevel.READ, granted_by=3)
        evaluator.grant(7, 5, PermissionLevel.WRITE, granted_by=3)
        grants = evaluator.list_grants(7)
        assert {(g.grantee_id, g.level) for g in grants} == {
            (4, PermissionLevel.READ),
            (5, PermissionLevel.WRITE),
        }
        assert all(g.granted_by == 3 for g in grants)


class TestPasswords:
    def test_hash_and_verify(self):
        hashed = hash_password("s3cret", rounds=4)
        assert hashed != "s3cret"
        assert hashed.startswith("$2")
        assert verify_password("s3cret", hashed)
        assert not verify_password("wrong", hashed)


class TestStorageFailures:
    @pytest.fixture
    def boom(self):
        return OperationalError("SELECT", {}, Exception("disk I/O error"))

    def test_evaluate_wraps_engine_error(self, session, boom):
        evaluator = AccessPolicyEvaluator(session)
        with patch.object(session, "execute", side_effect=boom):
            with pytest.raises(StorageFailureError) as exc:
                evaluator.evaluate(_doc(), requester_id=4)
        assert exc.value.kind == "storage_failure"
        assert exc.value.operation == "evaluate_access"

    def test_owner_and_anonymous_need_no_lookup(self, session, boom):
        evaluator = AccessPolicyEvaluator(session)
        with patch.object(session, "execute", side_effect=boom):
            assert evaluator.evaluate(_doc(), requester_id=3).is_owner
            assert not evaluator.evaluate(_doc()).can_read

    @pytest.mark.parametrize("call", [
        lambda evaluator: evaluator.revoke(7, 4),
        lambda evaluator: evaluator.list_grants(7),
    ])
    def test_grant_administration_wraps_engine_error(self, session, doc, boom, call):
        doc(id=7)
        evaluator = AccessPolicyEvaluator(session)
        with patch.object(session, "execute", side_effect=boom):
            with pytest.raises(StorageFailureError):
                call(evaluator)
