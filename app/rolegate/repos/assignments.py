from datetime import datetime

from sqlalchemy import and_, delete, func, or_, select, update

from app.rolegate.db.models import AdvancedPermission, RoleAssignment


def current_assignment_clause(now: datetime):
    return and_(
        RoleAssignment.is_active.is_(True),
        RoleAssignment.deleted_at.is_(None),
        or_(RoleAssignment.valid_from.is_(None), RoleAssignment.valid_from <= now),
        or_(RoleAssignment.valid_until.is_(None), RoleAssignment.valid_until > now),
    )


def live_assignment_clause(now: datetime):
    """Assignments that are not removed or expired, including ones scheduled to start later."""
    return and_(
        RoleAssignment.is_active.is_(True),
        RoleAssignment.deleted_at.is_(None),
        or_(RoleAssignment.valid_until.is_(None), RoleAssignment.valid_until > now),
    )


def _role_clause(*, role_type: str | None, custom_role_id):
    if custom_role_id is not None:
        return RoleAssignment.custom_role_id == custom_role_id
    return RoleAssignment.role_type == role_type


class AssignmentRepository:
    def __init__(self, db):
        self.db = db

    def list_current_for_user(self, tenant_id, user_id, *, now: datetime | None = None):
        now = now or datetime.utcnow()
        stmt = (
            select(RoleAssignment)
            .where(RoleAssignment.tenant_id == tenant_id, RoleAssignment.user_id == user_id)
            .where(current_assignment_clause(now))
            .order_by(RoleAssignment.assigned_at)
        )
        return self.db.execute(stmt).scalars().all()

    def find_live(
        self,
        tenant_id,
        user_id,
        *,
        role_type: str | None = None,
        custom_role_id=None,
        now: datetime | None = None,
        for_update: bool = False,
    ):
        now = now or datetime.utcnow()
        stmt = (
            select(RoleAssignment)
            .where(RoleAssignment.tenant_id == tenant_id, RoleAssignment.user_id == user_id)
            .where(_role_clause(role_type=role_type, custom_role_id=custom_role_id))
            .where(live_assignment_clause(now))
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalars().first()

    def list_live_user_ids(
        self,
        tenant_id,
        user_ids,
        *,
        role_type: str | None = None,
        custom_role_id=None,
        now: datetime | None = None,
    ) -> set[str]:
        if not user_ids:
            return set()
        now = now or datetime.utcnow()
        stmt = (
            select(RoleAssignment.user_id)
            .where(RoleAssignment.tenant_id == tenant_id, RoleAssignment.user_id.in_(list(user_ids)))
            .where(_role_clause(role_type=role_type, custom_role_id=custom_role_id))
            .where(live_assignment_clause(now))
        )
        return {str(row[0]) for row in self.db.execute(stmt).all()}

    def count_live_for_custom_role(self, custom_role_id, *, now: datetime | None = None) -> int:
        now = now or datetime.utcnow()
        stmt = (
            select(func.count())
            .select_from(RoleAssignment)
            .where(RoleAssignment.custom_role_id == custom_role_id)
            .where(live_assignment_clause(now))
        )
        return self.db.execute(stmt).scalar_one()

    def deactivate_for_custom_role(self, custom_role_id, *, now: datetime) -> int:
        stmt = (
            update(RoleAssignment)
            .where(RoleAssignment.custom_role_id == custom_role_id)
            .where(RoleAssignment.deleted_at.is_(None))
            .values(is_active=False, deleted_at=now)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount or 0

    def add(self, assignment: RoleAssignment) -> RoleAssignment:
        self.db.add(assignment)
        self.db.flush()
        return assignment

    def add_all(self, assignments: list[RoleAssignment]) -> None:
        self.db.add_all(assignments)
        self.db.flush()

    def list_overlays(self, assignment_ids):
        if not assignment_ids:
            return []
        stmt = (
            select(AdvancedPermission)
            .where(AdvancedPermission.assignment_id.in_(list(assignment_ids)))
            .order_by(AdvancedPermission.resource, AdvancedPermission.action)
        )
        return self.db.execute(stmt).scalars().all()

    def replace_overlays(self, assignment_id, entries: list[AdvancedPermission]) -> None:
        stmt = delete(AdvancedPermission).where(AdvancedPermission.assignment_id == assignment_id)
        self.db.execute(stmt)
        for entry in entries:
            self.db.add(entry)
        self.db.flush()
