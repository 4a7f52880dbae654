from __future__ import annotations

import uuid

import pytest
from sqlalchemy import select

from callbook import audit
from callbook.crm.models import Call, Lead
from callbook.crm.repositories import CallRepository, LeadRepository, apply_call_scope, apply_lead_scope
from callbook.metrics import access_denied_total
from callbook.platform.security import (
    ADMIN_ROLE,
    TELECALLER_ROLE,
    AuthContext,
    AuthorizationError,
    authorize_self_or_admin,
    authorize_write,
    is_allowed,
    require_admin,
    scope,
)


@pytest.fixture(autouse=True)
def clear_audit() -> None:
    audit.audit_entries.clear()


def _telecaller() -> AuthContext:
    return AuthContext(user_id=uuid.uuid4(), role=TELECALLER_ROLE)


def _admin() -> AuthContext:
    return AuthContext(user_id=uuid.uuid4(), role=ADMIN_ROLE)


def test_admin_scope_is_unrestricted() -> None:
    assert scope(_admin()).is_unrestricted


def test_telecaller_scope_is_own_user_id() -> None:
    ctx = _telecaller()
    scope_filter = scope(ctx)
    assert not scope_filter.is_unrestricted
    assert scope_filter.owner_user_id == ctx.user_id


def test_lead_repository_narrows_telecaller_queries_to_created_by() -> None:
    sql = str(LeadRepository().apply_scope_query(select(Lead), _telecaller()))
    assert "WHERE" in sql
    assert "created_by" in sql.split("WHERE", 1)[1]


def test_call_repository_narrows_telecaller_queries_to_placing_user() -> None:
    sql = str(CallRepository().apply_scope_query(select(Call), _telecaller()))
    assert "WHERE" in sql
    assert "user_id" in sql.split("WHERE", 1)[1]


def test_admin_queries_are_left_unfiltered() -> None:
    stmt = LeadRepository().apply_scope_query(select(Lead), _admin())
    assert "WHERE" not in str(stmt)


def test_scope_helpers_bind_the_caller_id() -> None:
    ctx = _telecaller()
    lead_stmt = apply_lead_scope(select(Lead), ctx)
    call_stmt = apply_call_scope(select(Call), ctx)
    assert ctx.user_id in lead_stmt.compile().params.values()
    assert ctx.user_id in call_stmt.compile().params.values()
    assert "WHERE" not in str(apply_call_scope(select(Call), _admin()))


def test_is_allowed_checks_ownership_for_telecallers() -> None:
    ctx = _telecaller()
    assert is_allowed(ctx, ctx.user_id)
    assert not is_allowed(ctx, uuid.uuid4())
    assert not is_allowed(ctx, None)
    assert is_allowed(_admin(), uuid.uuid4())


def test_authorize_write_denial_is_audited_and_counted() -> None:
    ctx = _telecaller()
    before = access_denied_total.labels(resource="lead", action="log_call")._value.get()

    with pytest.raises(AuthorizationError) as excinfo:
        authorize_write(ctx, "lead", uuid.uuid4(), action="log_call")

    assert excinfo.value.resource == "lead"
    assert excinfo.value.action == "log_call"
    assert access_denied_total.labels(resource="lead", action="log_call")._value.get() == before + 1
    denied = audit.entries_for("security.access", action="access.denied")
    assert len(denied) == 1
    assert denied[0]["actor_user_id"] == ctx.user_id
    assert denied[0]["after"]["role"] == TELECALLER_ROLE


def test_authorize_self_or_admin() -> None:
    ctx = _telecaller()
    authorize_self_or_admin(ctx, ctx.user_id, action="read")
    authorize_self_or_admin(_admin(), uuid.uuid4(), action="read")

    with pytest.raises(AuthorizationError):
        authorize_self_or_admin(ctx, uuid.uuid4(), action="read")


def test_require_admin_rejects_telecallers() -> None:
    require_admin(_admin(), resource="telecaller_stats", action="read")

    with pytest.raises(AuthorizationError):
        require_admin(_telecaller(), resource="telecaller_stats", action="read")


def test_audit_history_keeps_only_the_newest_entries() -> None:
    ctx = _telecaller()
    for _ in range(audit.AUDIT_HISTORY_LIMIT + 5):
        with pytest.raises(AuthorizationError):
            authorize_write(ctx, "lead", uuid.uuid4(), action="update")

    assert len(audit.audit_entries) == audit.AUDIT_HISTORY_LIMIT
