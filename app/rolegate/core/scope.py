from app.rolegate.core.error_catalog import AppError, ErrorCatalog
from app.rolegate.core.roles import is_top_level


def same_id(left, right) -> bool:
    if left is None or right is None:
        return False
    return str(left) == str(right)


def can_cross_tenant(actor_level: int) -> bool:
    return is_top_level(actor_level)


def enforce_tenant_scope(
    actor_tenant_id,
    tenant_id,
    *,
    actor_level: int,
    entity: str = "tenant",
) -> None:
    """Reject cross-tenant access with NOT_FOUND so foreign data is never acknowledged."""
    if not tenant_id:
        raise AppError(ErrorCatalog.NOT_FOUND, details={"entity": entity})
    if same_id(actor_tenant_id, tenant_id):
        return
    if can_cross_tenant(actor_level):
        return
    raise AppError(ErrorCatalog.NOT_FOUND, details={"entity": entity, "id": str(tenant_id)})
