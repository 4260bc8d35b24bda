"""initial

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


class GUID(sa.TypeDecorator):
    impl = sa.CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            from sqlalchemy.dialects.postgresql import UUID

            return dialect.type_descriptor(UUID(as_uuid=True))
        return dialect.type_descriptor(sa.CHAR(36))


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False, unique=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("custom_role_baseline", sa.String(length=50), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "users",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("tenant_id", GUID(), sa.ForeignKey("tenants.id"), nullable=False, index=True),
        sa.Column("username", sa.String(length=150), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_tenant_username", "users", ["tenant_id", "username"], unique=False)

    op.create_table(
        "permission_catalog",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("code", sa.String(length=150), nullable=False),
        sa.Column("resource", sa.String(length=100), nullable=False, index=True),
        sa.Column("action", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("tenant_id", GUID(), sa.ForeignKey("tenants.id"), nullable=True, index=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_permission_catalog_code", "permission_catalog", ["code"], unique=True)

    op.create_table(
        "custom_roles",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("tenant_id", GUID(), sa.ForeignKey("tenants.id"), nullable=False, index=True),
        sa.Column("name", sa.String(length=150), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("level", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_by", GUID(), nullable=True),
        sa.Column("updated_by", GUID(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_custom_roles_tenant_name", "custom_roles", ["tenant_id", "name"], unique=False)

    op.create_table(
        "role_grants",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("tenant_id", GUID(), sa.ForeignKey("tenants.id"), nullable=True, index=True),
        sa.Column("system_role", sa.String(length=50), nullable=True, index=True),
        sa.Column("custom_role_id", GUID(), sa.ForeignKey("custom_roles.id"), nullable=True, index=True),
        sa.Column("permission_id", GUID(), sa.ForeignKey("permission_catalog.id"), nullable=False, index=True),
        sa.Column("scope", sa.String(length=20), nullable=True),
        sa.Column("conditions", sa.JSON(), nullable=True),
        sa.Column("allowed_fields", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "(system_role IS NULL) <> (custom_role_id IS NULL)",
            name="ck_role_grants_single_role",
        ),
    )

    op.create_table(
        "role_assignments",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("tenant_id", GUID(), sa.ForeignKey("tenants.id"), nullable=False, index=True),
        sa.Column("user_id", GUID(), sa.ForeignKey("users.id"), nullable=False, index=True),
        sa.Column("role_type", sa.String(length=50), nullable=True),
        sa.Column("custom_role_id", GUID(), sa.ForeignKey("custom_roles.id"), nullable=True, index=True),
        sa.Column("assigned_by", GUID(), nullable=True),
        sa.Column("assigned_at", sa.DateTime(), nullable=False),
        sa.Column("valid_from", sa.DateTime(), nullable=True),
        sa.Column("valid_until", sa.DateTime(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint(
            "(role_type IS NULL) <> (custom_role_id IS NULL)",
            name="ck_role_assignments_single_role",
        ),
    )
    op.create_index(
        "ix_role_assignments_tenant_user_active",
        "role_assignments",
        ["tenant_id", "user_id", "is_active"],
        unique=False,
    )

    op.create_table(
        "advanced_permissions",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("assignment_id", GUID(), sa.ForeignKey("role_assignments.id"), nullable=False, index=True),
        sa.Column("resource", sa.String(length=100), nullable=False),
        sa.Column("action", sa.String(length=50), nullable=False),
        sa.Column("scope", sa.String(length=20), nullable=False, server_default="all"),
        sa.Column("conditions", sa.JSON(), nullable=True),
        sa.Column("allowed_fields", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("assignment_id", "resource", "action", name="uq_advanced_permission_key"),
    )

    op.create_table(
        "direct_grants",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("tenant_id", GUID(), sa.ForeignKey("tenants.id"), nullable=False, index=True),
        sa.Column("user_id", GUID(), sa.ForeignKey("users.id"), nullable=False, index=True),
        sa.Column("permission_id", GUID(), sa.ForeignKey("permission_catalog.id"), nullable=False),
        sa.Column("scope", sa.String(length=20), nullable=True),
        sa.Column("conditions", sa.JSON(), nullable=True),
        sa.Column("allowed_fields", sa.JSON(), nullable=True),
        sa.Column("granted_by", GUID(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("tenant_id", "user_id", "permission_id", name="uq_direct_grant"),
    )

    op.create_table(
        "audit_events",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("tenant_id", GUID(), nullable=False, index=True),
        sa.Column("user_id", GUID(), nullable=True, index=True),
        sa.Column("trace_id", sa.String(length=64), nullable=True, index=True),
        sa.Column("actor", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=False),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("before_payload", sa.JSON(), nullable=True),
        sa.Column("after_payload", sa.JSON(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("result", sa.String(length=20), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("audit_events")
    op.drop_table("direct_grants")
    op.drop_table("advanced_permissions")
    op.drop_index("ix_role_assignments_tenant_user_active", table_name="role_assignments")
    op.drop_table("role_assignments")
    op.drop_table("role_grants")
    op.drop_index("ix_custom_roles_tenant_name", table_name="custom_roles")
    op.drop_table("custom_roles")
    op.drop_index("ix_permission_catalog_code", table_name="permission_catalog")
    op.drop_table("permission_catalog")
    op.drop_index("ix_users_tenant_username", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_index("ix_users_username", table_name="users")
    op.drop_table("users")
    op.drop_table("tenants")
