from sqlalchemy import select

from app.rolegate.core.config import settings
from app.rolegate.core.roles import ALL_PERMISSIONS, SYSTEM_ROLES, SystemRole
from app.rolegate.db.models import PermissionCatalog, RoleAssignment, RoleGrant, Tenant, User


def default_permission_codes() -> list[str]:
    codes = {
        code
        for definition in SYSTEM_ROLES.values()
        for code in definition.permissions
        if code != ALL_PERMISSIONS
    }
    return sorted(codes)


def _permission_name(code: str) -> str:
    resource, action = code.split(":", 1)
    return f"{action.capitalize()} {resource}"


def _get_or_create_tenant(db):
    tenant = db.execute(select(Tenant).where(Tenant.name == settings.DEFAULT_TENANT_NAME)).scalars().first()
    if tenant:
        return tenant
    tenant = Tenant(name=settings.DEFAULT_TENANT_NAME)
    db.add(tenant)
    db.flush()
    return tenant


def _get_or_create_permissions(db):
    existing = {
        perm.code
        for perm in db.execute(select(PermissionCatalog).where(PermissionCatalog.tenant_id.is_(None))).scalars().all()
    }
    for code in default_permission_codes():
        if code in existing:
            continue
        resource, action = code.split(":", 1)
        db.add(
            PermissionCatalog(
                code=code,
                resource=resource,
                action=action,
                name=_permission_name(code),
                description=f"Allows {action} on {resource}",
            )
        )


def _assign_role_permissions(db):
    permissions = {
        perm.code: perm
        for perm in db.execute(select(PermissionCatalog).where(PermissionCatalog.tenant_id.is_(None))).scalars().all()
    }
    existing_pairs = {
        (grant.system_role, grant.permission_id)
        for grant in db.execute(
            select(RoleGrant).where(RoleGrant.tenant_id.is_(None), RoleGrant.system_role.is_not(None))
        )
        .scalars()
        .all()
    }
    for role, definition in SYSTEM_ROLES.items():
        codes = permissions.keys() if ALL_PERMISSIONS in definition.permissions else definition.permissions
        for code in codes:
            permission = permissions.get(code)
            if not permission:
                continue
            pair = (role.value, permission.id)
            if pair in existing_pairs:
                continue
            db.add(RoleGrant(system_role=role.value, permission_id=permission.id, is_active=True))


def _get_or_create_superadmin(db, tenant):
    user = (
        db.execute(select(User).where(User.username == settings.SUPERADMIN_USERNAME, User.tenant_id == tenant.id))
        .scalars()
        .first()
    )
    if user is None:
        user = User(
            tenant_id=tenant.id,
            username=settings.SUPERADMIN_USERNAME,
            email=settings.SUPERADMIN_EMAIL,
            is_active=True,
        )
        db.add(user)
        db.flush()
    assignment = (
        db.execute(
            select(RoleAssignment).where(
                RoleAssignment.user_id == user.id,
                RoleAssignment.role_type == SystemRole.SUPER_ADMIN.value,
                RoleAssignment.deleted_at.is_(None),
            )
        )
        .scalars()
        .first()
    )
    if assignment is None:
        db.add(
            RoleAssignment(
                tenant_id=tenant.id,
                user_id=user.id,
                role_type=SystemRole.SUPER_ADMIN.value,
                is_active=True,
            )
        )
    return user


def run_seed(db):
    tenant = _get_or_create_tenant(db)
    _get_or_create_permissions(db)
    db.flush()
    _assign_role_permissions(db)
    _get_or_create_superadmin(db, tenant)
    db.commit()
