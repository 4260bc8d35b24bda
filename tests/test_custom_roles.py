import uuid
from datetime import datetime, timedelta

import pytest

from app.rolegate.core.error_catalog import AppError
from app.rolegate.db.models import CustomRole, RoleAssignment, RoleGrant
from app.rolegate.db.seed import run_seed
from app.rolegate.services.custom_roles import CustomRoleStore
from tests.rbac_helpers import assign_custom_role, assign_system_role, create_tenant, create_user


def _setup(db_session, suffix: str, role: str = "TENANT_ADMIN"):
    run_seed(db_session)
    tenant = create_tenant(db_session, name_suffix=suffix)
    actor = create_user(db_session, tenant=tenant, username=f"{suffix.lower()}-actor")
    assign_system_role(db_session, user=actor, role=role)
    return tenant, actor


def _codes(detail):
    return sorted(grant.key.code for grant in detail.grants)


def test_create_custom_role_with_grants(db_session):
    tenant, actor = _setup(db_session, "Create")

    detail = CustomRoleStore(db_session).create(
        tenant.id,
        actor.id,
        "Shift Lead",
        description="Runs the floor",
        grants=["employees:view", "VIEW_COURSES", {"code": "courses:update", "scope": "tenant", "tenantIds": [str(tenant.id)]}],
    )

    assert detail.name == "Shift Lead"
    assert detail.identifier == "SHIFT_LEAD"
    assert detail.level == 30
    assert detail.stored_level is None
    assert _codes(detail) == ["courses:update", "courses:view", "employees:view"]
    scoped = next(grant for grant in detail.grants if grant.key.code == "courses:update")
    assert scoped.scope == "tenant"
    assert scoped.conditions == {"allowedTenants": [str(tenant.id)]}


def test_create_rejects_duplicate_and_system_names(db_session):
    tenant, actor = _setup(db_session, "Names")
    store = CustomRoleStore(db_session)
    store.create(tenant.id, actor.id, "Auditor", grants=["employees:view"])

    with pytest.raises(AppError) as exc:
        store.create(tenant.id, actor.id, "  Auditor ", grants=["employees:view"])
    assert exc.value.code == "DUPLICATE_NAME"

    with pytest.raises(AppError) as exc:
        store.create(tenant.id, actor.id, "hr manager")
    assert exc.value.code == "DUPLICATE_NAME"
    assert exc.value.details["conflict"] == "system_role"

    with pytest.raises(AppError) as exc:
        store.create(tenant.id, actor.id, "   ")
    assert exc.value.code == "VALIDATION_ERROR"


def test_same_name_allowed_in_other_tenant(db_session):
    tenant, actor = _setup(db_session, "Shared A")
    other, other_actor = _setup(db_session, "Shared B")
    store = CustomRoleStore(db_session)

    first = store.create(tenant.id, actor.id, "Auditor")
    second = store.create(other.id, other_actor.id, "Auditor")

    assert first.id != second.id


def test_create_rejects_unknown_permission(db_session):
    tenant, actor = _setup(db_session, "Unknown Grant")

    with pytest.raises(AppError) as exc:
        CustomRoleStore(db_session).create(tenant.id, actor.id, "Pilot", grants=["widgets:fly", "employees:view"])

    assert exc.value.code == "INVALID_GRANT"
    assert exc.value.details["invalid"] == ["widgets:fly"]
    assert db_session.query(CustomRole).filter(CustomRole.name == "Pilot").count() == 0


def test_create_drops_malformed_keys(db_session):
    tenant, actor = _setup(db_session, "Malformed")
    store = CustomRoleStore(db_session)

    detail = store.create(tenant.id, actor.id, "Reader", grants=["employees:view", "not a key!"])
    assert _codes(detail) == ["employees:view"]

    with pytest.raises(AppError) as exc:
        store.create(tenant.id, actor.id, "Nobody", grants=["???", "also bad"])
    assert exc.value.code == "MALFORMED_PERMISSION_KEY"


def test_create_cannot_grant_beyond_actor(db_session):
    tenant, actor = _setup(db_session, "Ceiling")

    with pytest.raises(AppError) as exc:
        CustomRoleStore(db_session).create(tenant.id, actor.id, "Purger", grants=["users:delete", "users:view"])

    assert exc.value.code == "HIERARCHY_VIOLATION"
    assert exc.value.details["disallowed"] == ["users:delete"]


def test_create_level_bounds(db_session):
    tenant, actor = _setup(db_session, "Level Bounds")
    store = CustomRoleStore(db_session)

    with pytest.raises(AppError) as exc:
        store.create(tenant.id, actor.id, "Too Senior", level=10)
    assert exc.value.code == "HIERARCHY_VIOLATION"

    detail = store.create(tenant.id, actor.id, "Senior", level=20)
    assert detail.level == 20


def test_create_without_level_clamps_tenant_baseline(db_session):
    run_seed(db_session)
    tenant = create_tenant(db_session, name_suffix="Senior Baseline", baseline="ADMIN")
    actor = create_user(db_session, tenant=tenant, username="senior-baseline-actor")
    assign_system_role(db_session, user=actor, role="TENANT_ADMIN")

    detail = CustomRoleStore(db_session).create(tenant.id, actor.id, "Auditor")

    assert detail.level == 20
    assert detail.stored_level is None


def test_create_requires_role_admin_tier(db_session):
    tenant, manager = _setup(db_session, "Tier", role="MANAGER")

    with pytest.raises(AppError) as exc:
        CustomRoleStore(db_session).create(tenant.id, manager.id, "Helper")
    assert exc.value.code == "HIERARCHY_VIOLATION"


def test_update_renames_and_replaces_grants(db_session):
    tenant, actor = _setup(db_session, "Update")
    store = CustomRoleStore(db_session)
    created = store.create(tenant.id, actor.id, "Shift Lead", grants=["employees:view", "courses:view"])

    updated = store.update(
        tenant.id,
        actor.id,
        "SHIFT_LEAD",
        {"name": "Floor Lead", "description": "Owns the floor", "grants": ["documents:view"], "level": 40},
    )

    assert updated.id == created.id
    assert updated.name == "Floor Lead"
    assert updated.description == "Owns the floor"
    assert updated.level == 40
    assert _codes(updated) == ["documents:view"]
    assert db_session.query(RoleGrant).filter(RoleGrant.custom_role_id == uuid.UUID(created.id)).count() == 1


def test_update_without_grants_keeps_grants(db_session):
    tenant, actor = _setup(db_session, "Partial")
    store = CustomRoleStore(db_session)
    created = store.create(tenant.id, actor.id, "Reviewer", grants=["employees:view"])

    updated = store.update(tenant.id, actor.id, created.id, {"is_active": False})

    assert updated.is_active is False
    assert _codes(updated) == ["employees:view"]


def test_update_rejects_system_role_and_duplicate(db_session):
    tenant, actor = _setup(db_session, "Immutable")
    store = CustomRoleStore(db_session)
    store.create(tenant.id, actor.id, "Alpha")
    store.create(tenant.id, actor.id, "Beta")

    with pytest.raises(AppError) as exc:
        store.update(tenant.id, actor.id, "ADMIN", {"name": "Boss"})
    assert exc.value.code == "SYSTEM_ROLE_IMMUTABLE"

    with pytest.raises(AppError) as exc:
        store.update(tenant.id, actor.id, "Beta", {"name": "Alpha"})
    assert exc.value.code == "DUPLICATE_NAME"


def test_delete_in_use_requires_force(db_session):
    tenant, actor = _setup(db_session, "Delete")
    store = CustomRoleStore(db_session)
    created = store.create(tenant.id, actor.id, "Temp", grants=["employees:view"])
    holder = create_user(db_session, tenant=tenant, username="delete-holder")
    assignment = assign_custom_role(db_session, user=holder, role=db_session.get(CustomRole, uuid.UUID(created.id)))

    with pytest.raises(AppError) as exc:
        store.delete(tenant.id, actor.id, "Temp")
    assert exc.value.code == "ROLE_IN_USE"
    assert exc.value.details["count"] == 1

    db_session.expire_all()
    assert store.find_by_identifier(tenant.id, "Temp") is not None
    assert db_session.get(RoleAssignment, assignment.id).is_active is True

    result = store.delete(tenant.id, actor.id, "Temp", force=True)
    assert result.assignments_deactivated == 1

    db_session.expire_all()
    assert store.find_by_identifier(tenant.id, "Temp") is None
    assert db_session.get(RoleAssignment, assignment.id).is_active is False
    assert db_session.query(RoleGrant).filter(RoleGrant.custom_role_id == uuid.UUID(created.id)).count() == 0
    assert db_session.get(CustomRole, uuid.UUID(created.id)).deleted_at is not None


def test_delete_ignores_expired_assignments(db_session):
    tenant, actor = _setup(db_session, "Expired Holder")
    store = CustomRoleStore(db_session)
    created = store.create(tenant.id, actor.id, "Lapsed")
    holder = create_user(db_session, tenant=tenant, username="expired-holder")
    assign_custom_role(
        db_session,
        user=holder,
        role=db_session.get(CustomRole, uuid.UUID(created.id)),
        valid_until=datetime.utcnow() - timedelta(days=1),
    )

    result = store.delete(tenant.id, actor.id, "Lapsed")

    assert result.assignments_deactivated == 1
    db_session.expire_all()
    assert store.find_by_identifier(tenant.id, "Lapsed") is None


def test_delete_counts_assignments_made_after_lookup(db_session, monkeypatch):
    tenant, actor = _setup(db_session, "Late Holder")
    store = CustomRoleStore(db_session)
    created = store.create(tenant.id, actor.id, "Racing")
    role = db_session.get(CustomRole, uuid.UUID(created.id))
    holder = create_user(db_session, tenant=tenant, username="late-holder")
    check_role_below_actor = store._check_role_below_actor
    late = []

    def assign_then_check(actor_row, role_row):
        late.append(assign_custom_role(db_session, user=holder, role=role))
        check_role_below_actor(actor_row, role_row)

    monkeypatch.setattr(store, "_check_role_below_actor", assign_then_check)

    with pytest.raises(AppError) as exc:
        store.delete(tenant.id, actor.id, "Racing")
    assert exc.value.code == "ROLE_IN_USE"

    db_session.expire_all()
    assert db_session.get(RoleAssignment, late[0].id).is_active is True
    assert store.find_by_identifier(tenant.id, "Racing") is not None


def test_delete_unused_role_and_reuse_name(db_session):
    tenant, actor = _setup(db_session, "Reuse")
    store = CustomRoleStore(db_session)
    store.create(tenant.id, actor.id, "Seasonal")

    result = store.delete(tenant.id, actor.id, "Seasonal")
    assert result.assignments_deactivated == 0

    recreated = store.create(tenant.id, actor.id, "Seasonal")
    assert recreated.name == "Seasonal"
    assert [role.name for role in store.list(tenant.id)] == ["Seasonal"]
    assert len(store.list(tenant.id, include_deleted=True)) == 2


def test_find_by_identifier_variants(db_session):
    tenant, actor = _setup(db_session, "Lookup")
    other, _ = _setup(db_session, "Lookup Other")
    store = CustomRoleStore(db_session)
    created = store.create(tenant.id, actor.id, "Lead Auditor")

    for identifier in (created.id, f"CUSTOM_{created.id}", "Lead Auditor", "LEAD_AUDITOR", "lead auditor"):
        role = store.find_by_identifier(tenant.id, identifier)
        assert role is not None
        assert str(role.id) == created.id

    assert store.find_by_identifier(other.id, created.id) is None
    assert store.find_by_identifier(tenant.id, "") is None

    with pytest.raises(AppError) as exc:
        store.get(other.id, created.id)
    assert exc.value.code == "NOT_FOUND"
