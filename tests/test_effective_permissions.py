import uuid
from datetime import datetime, timedelta

import pytest

from app.rolegate.core.error_catalog import AppError
from app.rolegate.db.models import DirectGrant, PermissionCatalog, RoleGrant
from app.rolegate.db.seed import default_permission_codes, run_seed
from app.rolegate.services.advanced_permissions import PermissionContext
from app.rolegate.services.effective_permissions import EffectivePermissionResolver
from app.rolegate.services.permission_catalog import PermissionKey
from tests.rbac_helpers import (
    add_overlay,
    assign_custom_role,
    assign_system_role,
    create_custom_role_row,
    create_tenant,
    create_user,
)


def _permission(db_session, code: str) -> PermissionCatalog:
    return db_session.query(PermissionCatalog).filter(PermissionCatalog.code == code).one()


def _granted(permission_map) -> set[str]:
    return {key.code for key in permission_map.granted_keys()}


def _setup(db_session, suffix: str):
    run_seed(db_session)
    return create_tenant(db_session, name_suffix=suffix)


def test_map_covers_whole_catalog(db_session):
    tenant = _setup(db_session, "Coverage")
    employee = create_user(db_session, tenant=tenant, username="cov-employee")
    assign_system_role(db_session, user=employee, role="EMPLOYEE")

    permissions = EffectivePermissionResolver(db_session).resolve_for_principal(tenant.id, employee.id)

    assert len(permissions) == len(default_permission_codes())
    assert _granted(permissions) == {"courses:view", "documents:view"}
    assert permissions.get("users:view").granted is False
    assert permissions.get("VIEW_COURSES").sources == ("system:EMPLOYEE",)


def test_admin_super_admin_and_employee(db_session):
    tenant = _setup(db_session, "Scenario")
    admin = create_user(db_session, tenant=tenant, username="sc-admin")
    root = create_user(db_session, tenant=tenant, username="sc-root")
    employee = create_user(db_session, tenant=tenant, username="sc-employee")
    assign_system_role(db_session, user=admin, role="ADMIN")
    assign_system_role(db_session, user=root, role="SUPER_ADMIN")
    assign_system_role(db_session, user=employee, role="EMPLOYEE")
    resolver = EffectivePermissionResolver(db_session)

    assert resolver.has_permission(tenant.id, admin.id, "users:delete")
    assert resolver.has_permission(tenant.id, admin.id, "roles:assign")
    assert not resolver.has_permission(tenant.id, employee.id, "users:delete")
    assert not resolver.has_permission(tenant.id, employee.id, "roles:assign")
    assert _granted(resolver.resolve_for_principal(tenant.id, root.id)) == set(default_permission_codes())


def test_unknown_key_is_not_granted(db_session):
    tenant = _setup(db_session, "Unknown Key")
    admin = create_user(db_session, tenant=tenant, username="uk-admin")
    assign_system_role(db_session, user=admin, role="ADMIN")

    assert not EffectivePermissionResolver(db_session).has_permission(tenant.id, admin.id, "widgets:fly")


def test_multiple_roles_union(db_session):
    tenant = _setup(db_session, "Union")
    user = create_user(db_session, tenant=tenant, username="un-user")
    assign_system_role(db_session, user=user, role="EMPLOYEE")
    assign_system_role(db_session, user=user, role="VIEWER")

    permissions = EffectivePermissionResolver(db_session).resolve_for_principal(tenant.id, user.id)

    assert _granted(permissions) == {
        "companies:view",
        "courses:view",
        "documents:view",
        "employees:view",
        "trainers:view",
    }
    assert permissions.get("courses:view").sources == ("system:EMPLOYEE", "system:VIEWER")


def test_overlay_grants_with_tenant_scope(db_session):
    tenant = _setup(db_session, "Overlay")
    user = create_user(db_session, tenant=tenant, username="ov-user")
    assignment = assign_system_role(db_session, user=user, role="EMPLOYEE")
    add_overlay(
        db_session,
        assignment=assignment,
        resource="users",
        action="view",
        scope="tenant",
        conditions={"allowedTenants": [str(tenant.id)]},
        fields=["name", "email"],
    )
    resolver = EffectivePermissionResolver(db_session)

    entry = resolver.resolve_for_principal(tenant.id, user.id).get("users:view")
    assert entry.granted
    assert entry.scope == "tenant"
    assert entry.allowed_fields == ("name", "email")
    assert entry.sources == (f"overlay:{assignment.id}",)

    assert resolver.has_permission(tenant.id, user.id, "users:view", PermissionContext(tenant_id=str(tenant.id)))
    assert not resolver.has_permission(
        tenant.id, user.id, "users:view", PermissionContext(tenant_id=str(uuid.uuid4()))
    )
    assert not resolver.has_permission(
        tenant.id, user.id, "users:view", PermissionContext(fields=("salary",))
    )


def test_overlay_replaces_role_grant_scope(db_session):
    tenant = _setup(db_session, "Overlay Replace")
    user = create_user(db_session, tenant=tenant, username="or-user")
    assignment = assign_system_role(db_session, user=user, role="EMPLOYEE")
    add_overlay(
        db_session,
        assignment=assignment,
        resource="courses",
        action="view",
        scope="hierarchy",
        conditions={"maxRoleLevel": 40},
    )
    resolver = EffectivePermissionResolver(db_session)

    entry = resolver.resolve_for_assignment(assignment).get("courses:view")
    assert entry.scope == "hierarchy"
    assert entry.sources == ("system:EMPLOYEE", f"overlay:{assignment.id}")
    assert resolver.has_permission(tenant.id, user.id, "courses:view", PermissionContext(target_role_level=50))
    assert not resolver.has_permission(tenant.id, user.id, "courses:view", PermissionContext(target_role_level=30))


def test_narrower_scope_wins_between_assignments(db_session):
    tenant = _setup(db_session, "Narrow")
    user = create_user(db_session, tenant=tenant, username="nw-user")
    employee = assign_system_role(db_session, user=user, role="EMPLOYEE")
    assign_system_role(db_session, user=user, role="TRAINER")
    add_overlay(
        db_session,
        assignment=employee,
        resource="courses",
        action="view",
        scope="tenant",
        conditions={"allowedTenants": [str(tenant.id)]},
    )

    entry = EffectivePermissionResolver(db_session).resolve_for_principal(tenant.id, user.id).get("courses:view")

    assert entry.granted
    assert entry.scope == "tenant"
    assert entry.conditions == {"allowedTenants": [str(tenant.id)]}


def test_direct_grant_applies_last(db_session):
    tenant = _setup(db_session, "Direct")
    user = create_user(db_session, tenant=tenant, username="dg-user")
    assign_system_role(db_session, user=user, role="EMPLOYEE")
    db_session.add(
        DirectGrant(
            tenant_id=tenant.id,
            user_id=user.id,
            permission_id=_permission(db_session, "reports:view").id,
            allowed_fields=["total"],
        )
    )
    db_session.commit()

    entry = EffectivePermissionResolver(db_session).resolve_for_principal(tenant.id, user.id).get("reports:view")

    assert entry.granted
    assert entry.sources == ("direct",)
    assert entry.allowed_fields == ("total",)


def test_custom_role_grants(db_session):
    tenant = _setup(db_session, "Custom")
    user = create_user(db_session, tenant=tenant, username="cu-user")
    role = create_custom_role_row(db_session, tenant=tenant, name="Reporter")
    db_session.add(
        RoleGrant(
            tenant_id=tenant.id,
            custom_role_id=role.id,
            permission_id=_permission(db_session, "reports:view").id,
        )
    )
    db_session.commit()
    assign_custom_role(db_session, user=user, role=role)
    resolver = EffectivePermissionResolver(db_session)

    permissions = resolver.resolve_for_principal(tenant.id, user.id)
    assert _granted(permissions) == {"reports:view"}
    assert permissions.get("reports:view").sources == ("custom:Reporter",)

    role.deleted_at = datetime.utcnow()
    db_session.commit()
    resolver.invalidate()
    assert _granted(resolver.resolve_for_principal(tenant.id, user.id)) == set()


def test_unknown_role_type_is_read_only(db_session):
    tenant = _setup(db_session, "Legacy")
    user = create_user(db_session, tenant=tenant, username="lg-user")
    assignment = assign_system_role(db_session, user=user, role="LEGACY_OPERATOR")
    add_overlay(db_session, assignment=assignment, resource="users", action="delete")
    add_overlay(db_session, assignment=assignment, resource="users", action="view")

    permissions = EffectivePermissionResolver(db_session).resolve_for_assignment(assignment)

    assert all(key.is_read_only for key in permissions.entries)
    assert _granted(permissions) == {"users:view"}
    assert PermissionKey("users", "delete") not in permissions.entries


def test_expired_and_future_assignments_are_ignored(db_session):
    tenant = _setup(db_session, "Window")
    user = create_user(db_session, tenant=tenant, username="wn-user")
    now = datetime.utcnow()
    assign_system_role(db_session, user=user, role="ADMIN", valid_until=now - timedelta(minutes=1))
    assign_system_role(db_session, user=user, role="MANAGER", valid_from=now + timedelta(days=1))

    assert _granted(EffectivePermissionResolver(db_session).resolve_for_principal(tenant.id, user.id)) == set()


def test_tenant_role_grants_override_platform_defaults(db_session):
    tenant = _setup(db_session, "Tenant Grants")
    user = create_user(db_session, tenant=tenant, username="tg-user")
    assign_system_role(db_session, user=user, role="EMPLOYEE")
    db_session.add(
        RoleGrant(
            tenant_id=tenant.id,
            system_role="EMPLOYEE",
            permission_id=_permission(db_session, "reports:view").id,
        )
    )
    db_session.commit()

    assert _granted(EffectivePermissionResolver(db_session).resolve_for_principal(tenant.id, user.id)) == {
        "reports:view"
    }


def test_inactive_principal_has_nothing(db_session):
    tenant = _setup(db_session, "Inactive")
    user = create_user(db_session, tenant=tenant, username="in-user", is_active=False)
    assign_system_role(db_session, user=user, role="ADMIN")

    permissions = EffectivePermissionResolver(db_session).resolve_for_principal(tenant.id, user.id)

    assert len(permissions) == len(default_permission_codes())
    assert _granted(permissions) == set()


def test_other_tenant_principal_is_not_found(db_session):
    tenant = _setup(db_session, "Iso")
    other = create_tenant(db_session, name_suffix="Iso Other")
    user = create_user(db_session, tenant=other, username="iso-user")
    assign_system_role(db_session, user=user, role="ADMIN")

    with pytest.raises(AppError) as exc:
        EffectivePermissionResolver(db_session).resolve_for_principal(tenant.id, user.id)
    assert exc.value.code == "NOT_FOUND"

    with pytest.raises(AppError) as exc:
        EffectivePermissionResolver(db_session).resolve_for_principal(tenant.id, uuid.uuid4())
    assert exc.value.code == "NOT_FOUND"


def test_grant_ceiling(db_session):
    tenant = _setup(db_session, "Grant Ceiling")
    manager = create_user(db_session, tenant=tenant, username="gc-manager")
    assign_system_role(db_session, user=manager, role="MANAGER")
    resolver = EffectivePermissionResolver(db_session)
    actor = resolver.hierarchy.load_actor(tenant.id, manager.id)

    resolver.enforce_grant_ceiling(actor, [PermissionKey("courses", "view")])
    with pytest.raises(AppError) as exc:
        resolver.enforce_grant_ceiling(actor, [PermissionKey("users", "delete"), PermissionKey("courses", "view")])
    assert exc.value.code == "HIERARCHY_VIOLATION"
    assert exc.value.details == {"disallowed": ["users:delete"]}
