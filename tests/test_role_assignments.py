import uuid
from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from app.rolegate.core.context import build_request_context
from app.rolegate.core.error_catalog import AppError
from app.rolegate.db.models import AdvancedPermission, AuditEvent, RoleAssignment
from app.rolegate.db.seed import run_seed
from app.rolegate.services.authorization import AuthorizationService
from app.rolegate.services.role_assignments import RoleAssignmentManager
from tests.rbac_helpers import (
    assign_system_role,
    create_custom_role_row,
    create_tenant,
    create_user,
)


def _setup(db_session, suffix: str, actor_role: str = "ADMIN"):
    run_seed(db_session)
    tenant = create_tenant(db_session, name_suffix=suffix)
    actor = create_user(db_session, tenant=tenant, username=f"{suffix.lower()}-actor")
    assign_system_role(db_session, user=actor, role=actor_role)
    target = create_user(db_session, tenant=tenant, username=f"{suffix.lower()}-target")
    return tenant, actor, target


def _live_rows(db_session, user, role: str):
    return (
        db_session.query(RoleAssignment)
        .filter(
            RoleAssignment.user_id == user.id,
            RoleAssignment.role_type == role,
            RoleAssignment.is_active.is_(True),
        )
        .all()
    )


def test_assign_is_idempotent(db_session):
    tenant, actor, target = _setup(db_session, "Idem")
    manager = RoleAssignmentManager(db_session)

    first = manager.assign(tenant.id, actor.id, target.id, "EMPLOYEE")
    second = manager.assign(tenant.id, actor.id, target.id, "employee")

    assert first.outcome == "assigned"
    assert second.outcome == "already_assigned"
    assert second.assignment_id == first.assignment_id
    assert len(_live_rows(db_session, target, "EMPLOYEE")) == 1


def test_future_dated_assignment_counts_as_existing(db_session):
    tenant, actor, target = _setup(db_session, "Future")
    starts = datetime.utcnow() + timedelta(days=2)
    manager = RoleAssignmentManager(db_session)

    first = manager.assign(tenant.id, actor.id, target.id, "TRAINER", valid_from=starts)
    second = manager.assign(tenant.id, actor.id, target.id, "TRAINER")

    assert second.outcome == "already_assigned"
    assert second.assignment_id == first.assignment_id


def test_reassign_replaces_overlays(db_session):
    tenant, actor, target = _setup(db_session, "Overlays")
    manager = RoleAssignmentManager(db_session)

    first = manager.assign(
        tenant.id,
        actor.id,
        target.id,
        "EMPLOYEE",
        advanced_permissions=[
            {"permissionId": "users:view", "scope": "tenant", "tenantIds": [str(tenant.id)]},
            {"resource": "reports", "action": "view", "fieldRestrictions": ["total"]},
        ],
    )
    assert [overlay.key.code for overlay in first.overlays] == ["reports:view", "users:view"]

    second = manager.assign(
        tenant.id,
        actor.id,
        target.id,
        "EMPLOYEE",
        advanced_permissions=[{"permissionId": "VIEW_COMPANIES"}],
    )
    assert second.outcome == "already_assigned"
    assert [overlay.key.code for overlay in second.overlays] == ["companies:view"]

    untouched = manager.assign(tenant.id, actor.id, target.id, "EMPLOYEE")
    assert [overlay.key.code for overlay in untouched.overlays] == ["companies:view"]

    cleared = manager.assign(tenant.id, actor.id, target.id, "EMPLOYEE", advanced_permissions=[])
    assert cleared.overlays == []


def test_assign_rejects_non_numeric_level_bound(db_session):
    tenant, actor, target = _setup(db_session, "Bad Bound")
    manager = RoleAssignmentManager(db_session)

    with pytest.raises(AppError) as exc:
        manager.assign(
            tenant.id,
            actor.id,
            target.id,
            "EMPLOYEE",
            advanced_permissions=[
                {"permissionId": "users:update", "scope": "hierarchy", "conditions": {"maxRoleLevel": "abc"}}
            ],
        )

    assert exc.value.code == "INVALID_GRANT"
    assert exc.value.details["condition"] == "maxRoleLevel"
    assert _live_rows(db_session, target, "EMPLOYEE") == []


def test_assign_beyond_actor_level_is_rejected(db_session):
    tenant, actor, target = _setup(db_session, "Violation", actor_role="MANAGER")
    admin = create_user(db_session, tenant=tenant, username="violation-admin")
    assign_system_role(db_session, user=admin, role="ADMIN")
    manager = RoleAssignmentManager(db_session)

    with pytest.raises(AppError) as exc:
        manager.assign(tenant.id, actor.id, target.id, "ADMIN")
    assert exc.value.code == "HIERARCHY_VIOLATION"
    assert exc.value.details["role_level"] == 10

    with pytest.raises(AppError) as exc:
        manager.assign(tenant.id, actor.id, admin.id, "EMPLOYEE")
    assert exc.value.code == "HIERARCHY_VIOLATION"
    assert exc.value.details["target_level"] == 10

    assert _live_rows(db_session, target, "ADMIN") == []


def test_assign_validation(db_session):
    tenant, actor, target = _setup(db_session, "Validation")
    other = create_tenant(db_session, name_suffix="Validation Other")
    stranger = create_user(db_session, tenant=other, username="validation-stranger")
    inactive_role = create_custom_role_row(db_session, tenant=tenant, name="Dormant", is_active=False)
    manager = RoleAssignmentManager(db_session)
    now = datetime.utcnow()

    with pytest.raises(AppError) as exc:
        manager.assign(tenant.id, actor.id, stranger.id, "EMPLOYEE")
    assert exc.value.code == "NOT_FOUND"

    with pytest.raises(AppError) as exc:
        manager.assign(tenant.id, actor.id, target.id, "EMPLOYEE", valid_from=now, valid_until=now)
    assert exc.value.code == "VALIDATION_ERROR"

    with pytest.raises(AppError) as exc:
        manager.assign(tenant.id, actor.id, target.id, inactive_role.name)
    assert exc.value.code == "NOT_FOUND"

    with pytest.raises(AppError) as exc:
        manager.assign(tenant.id, actor.id, target.id, "EMPLOYEE", advanced_permissions=["widgets:fly"])
    assert exc.value.code == "INVALID_GRANT"


def test_overlay_cannot_exceed_actor_grants(db_session):
    tenant, actor, target = _setup(db_session, "Overlay Ceiling", actor_role="MANAGER")

    with pytest.raises(AppError) as exc:
        RoleAssignmentManager(db_session).assign(
            tenant.id, actor.id, target.id, "EMPLOYEE", advanced_permissions=["users:delete"]
        )

    assert exc.value.code == "HIERARCHY_VIOLATION"
    assert exc.value.details["disallowed"] == ["users:delete"]
    assert _live_rows(db_session, target, "EMPLOYEE") == []


def test_assign_custom_role(db_session):
    tenant, actor, target = _setup(db_session, "Assign Custom")
    role = create_custom_role_row(db_session, tenant=tenant, name="Floor Lead", level=35)

    result = RoleAssignmentManager(db_session).assign(tenant.id, actor.id, target.id, "FLOOR_LEAD")

    assert result.outcome == "assigned"
    assert result.role.kind == "custom"
    assert result.role.role_id == role.id


def test_remove_outcomes(db_session):
    tenant, actor, target = _setup(db_session, "Remove")
    manager = RoleAssignmentManager(db_session)

    missing = manager.remove(tenant.id, actor.id, target.id, "EMPLOYEE")
    assert missing.outcome == "not_assigned"
    assert missing.assignment_id is None

    assigned = manager.assign(
        tenant.id, actor.id, target.id, "EMPLOYEE", advanced_permissions=["users:view"]
    )
    removed = manager.remove(tenant.id, actor.id, target.id, "EMPLOYEE")
    assert removed.outcome == "removed"
    assert removed.assignment_id == assigned.assignment_id
    assert _live_rows(db_session, target, "EMPLOYEE") == []
    assert (
        db_session.query(AdvancedPermission)
        .filter(AdvancedPermission.assignment_id == uuid.UUID(assigned.assignment_id))
        .count()
        == 0
    )

    again = manager.remove(tenant.id, actor.id, target.id, "EMPLOYEE")
    assert again.outcome == "not_assigned"


def test_bulk_assign_reports_each_principal(db_session):
    tenant, actor, fresh = _setup(db_session, "Bulk", actor_role="MANAGER")
    existing = create_user(db_session, tenant=tenant, username="bulk-existing")
    assign_system_role(db_session, user=existing, role="EMPLOYEE")
    senior = create_user(db_session, tenant=tenant, username="bulk-senior")
    assign_system_role(db_session, user=senior, role="ADMIN")
    other = create_tenant(db_session, name_suffix="Bulk Other")
    foreigner = create_user(db_session, tenant=other, username="bulk-foreigner")
    ghost = uuid.uuid4()

    result = RoleAssignmentManager(db_session).bulk_assign(
        tenant.id,
        actor.id,
        [fresh.id, existing.id, "not-a-uuid", ghost, foreigner.id, senior.id, fresh.id],
        "EMPLOYEE",
    )

    assert result.total == 6
    assert result.assigned == [str(fresh.id)]
    assert result.skipped_existing == [str(existing.id)]
    assert result.not_found == ["not-a-uuid", str(ghost), str(foreigner.id)]
    assert result.denied == [str(senior.id)]
    assert len(_live_rows(db_session, fresh, "EMPLOYEE")) == 1


def test_bulk_assign_treats_id_spellings_as_one_principal(db_session):
    tenant, actor, target = _setup(db_session, "BulkCase")

    result = RoleAssignmentManager(db_session).bulk_assign(
        tenant.id,
        actor.id,
        [str(target.id), str(target.id).upper(), f" {target.id} "],
        "EMPLOYEE",
    )

    assert result.total == 1
    assert result.assigned == [str(target.id)]
    assert len(_live_rows(db_session, target, "EMPLOYEE")) == 1


def test_direct_grants(db_session):
    tenant, actor, target = _setup(db_session, "Direct", actor_role="TENANT_ADMIN")
    manager = RoleAssignmentManager(db_session)

    created = manager.grant_direct(tenant.id, actor.id, target.id, ["reports:view"])
    assert created.created == ["reports:view"]

    updated = manager.grant_direct(
        tenant.id, actor.id, target.id, [{"code": "reports:view", "allowed_fields": ["total"]}]
    )
    assert updated.updated == ["reports:view"]
    listed = manager.list_direct(tenant.id, target.id)
    assert [(grant.key.code, grant.allowed_fields) for grant in listed] == [("reports:view", ("total",))]

    with pytest.raises(AppError) as exc:
        manager.grant_direct(tenant.id, actor.id, target.id, ["users:delete"])
    assert exc.value.code == "HIERARCHY_VIOLATION"

    revoked = manager.revoke_direct(tenant.id, actor.id, target.id, ["reports:view", "courses:create"])
    assert revoked.revoked == ["reports:view"]
    assert revoked.missing == ["courses:create"]
    assert manager.list_direct(tenant.id, target.id) == []


def test_direct_grants_require_role_admin(db_session):
    tenant, actor, target = _setup(db_session, "Direct Tier", actor_role="MANAGER")

    with pytest.raises(AppError) as exc:
        RoleAssignmentManager(db_session).grant_direct(tenant.id, actor.id, target.id, ["courses:view"])
    assert exc.value.code == "HIERARCHY_VIOLATION"


def test_list_assignments_shows_overlays(db_session):
    tenant, actor, target = _setup(db_session, "Listing")
    manager = RoleAssignmentManager(db_session)
    manager.assign(tenant.id, actor.id, target.id, "EMPLOYEE", advanced_permissions=["users:view"])
    manager.assign(tenant.id, actor.id, target.id, "TRAINER")

    views = manager.list_assignments(tenant.id, target.id)

    assert sorted((view.role.identifier, view.level) for view in views) == [("EMPLOYEE", 50), ("TRAINER", 40)]
    employee = next(view for view in views if view.role.identifier == "EMPLOYEE")
    assert [overlay.key.code for overlay in employee.overlays] == ["users:view"]


def test_mutations_are_audited(db_session):
    tenant, actor, target = _setup(db_session, "Audit")
    context = build_request_context(user_id=str(actor.id), tenant_id=str(tenant.id), trace_id="trace-audit")
    service = AuthorizationService(db_session, context=context)

    service.assign_role(tenant.id, actor.id, target.id, "EMPLOYEE")
    service.assign_role(tenant.id, actor.id, target.id, "EMPLOYEE")
    service.remove_role(tenant.id, actor.id, target.id, "EMPLOYEE")
    service.remove_role(tenant.id, actor.id, target.id, "EMPLOYEE")

    events = (
        db_session.query(AuditEvent)
        .filter(AuditEvent.tenant_id == tenant.id)
        .order_by(AuditEvent.created_at)
        .all()
    )
    assert [event.action for event in events] == ["role.assign", "role.remove"]
    assert all(event.trace_id == "trace-audit" for event in events)
    assert events[0].event_metadata["outcome"] == "assigned"
    assert events[0].event_metadata["actor_level"] == 10
    assert events[0].event_metadata["target_id"] == str(target.id)


def test_assignment_references_exactly_one_role(db_session):
    tenant, _actor, target = _setup(db_session, "Exclusive")
    role = create_custom_role_row(db_session, tenant=tenant, name="Both")
    db_session.add(
        RoleAssignment(
            tenant_id=tenant.id,
            user_id=target.id,
            role_type="EMPLOYEE",
            custom_role_id=role.id,
            is_active=True,
        )
    )

    with pytest.raises(IntegrityError):
        db_session.commit()
    db_session.rollback()


def test_admin_cannot_grant_super_admin_but_can_grant_employee(db_session):
    tenant, admin, target = _setup(db_session, "Scenario")
    service = AuthorizationService(db_session)

    with pytest.raises(AppError) as exc:
        service.assign_role(tenant.id, admin.id, target.id, "SUPER_ADMIN")
    assert exc.value.code == "HIERARCHY_VIOLATION"
    assert _live_rows(db_session, target, "SUPER_ADMIN") == []

    result = service.assign_role(tenant.id, admin.id, target.id, "EMPLOYEE")
    assert result.outcome == "assigned"
    assert len(_live_rows(db_session, target, "EMPLOYEE")) == 1

    permissions = service.resolve_effective_permissions(tenant.id, target.id)
    assert {key.code for key in permissions.granted_keys()} == {"courses:view", "documents:view"}
