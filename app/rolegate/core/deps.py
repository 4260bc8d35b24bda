from fastapi import Depends, Request
from jose import JWTError
from pydantic import ValidationError

from app.rolegate.core.context import PrincipalContext, RequestContext, build_request_context, get_request_context
from app.rolegate.core.error_catalog import AppError, ErrorCatalog
from app.rolegate.core.security import TokenData, decode_token, oauth2_scheme
from app.rolegate.db.session import get_db
from app.rolegate.repos.users import UserRepository
from app.rolegate.services.authorization import AuthorizationService


def get_current_token_data(token: str = Depends(oauth2_scheme)) -> TokenData:
    try:
        payload = decode_token(token)
        return TokenData(**payload)
    except (JWTError, ValidationError, TypeError) as exc:
        raise AppError(ErrorCatalog.INVALID_TOKEN) from exc


def get_current_principal(
    token_data: TokenData = Depends(get_current_token_data),
    db=Depends(get_db),
) -> PrincipalContext:
    user = UserRepository(db).get_by_id(token_data.sub)
    if user is None or str(user.tenant_id) != token_data.tenant_id:
        raise AppError(ErrorCatalog.INVALID_TOKEN)
    if not user.is_active or not token_data.is_active:
        raise AppError(ErrorCatalog.PRINCIPAL_INACTIVE)
    return PrincipalContext(id=str(user.id), tenant_id=str(user.tenant_id), is_active=user.is_active)


def require_request_context(
    request: Request,
    principal: PrincipalContext = Depends(get_current_principal),
) -> RequestContext:
    context = build_request_context(
        user_id=principal.id,
        tenant_id=principal.tenant_id,
        trace_id=getattr(request.state, "trace_id", ""),
    )
    request.state.context = context
    return context


def get_authorization_service(
    request: Request,
    context: RequestContext = Depends(require_request_context),
    db=Depends(get_db),
) -> AuthorizationService:
    cache = getattr(request.state, "permission_cache", None)
    if cache is None:
        cache = {}
        request.state.permission_cache = cache
    return AuthorizationService(db, context=context, cache=cache)


def require_permission(permission_key: str):
    def dependency(
        principal: PrincipalContext = Depends(get_current_principal),
        service: AuthorizationService = Depends(get_authorization_service),
    ) -> PrincipalContext:
        if not service.has_permission(principal.tenant_id, principal.id, permission_key):
            raise AppError(ErrorCatalog.PERMISSION_DENIED, details={"permission": permission_key})
        return principal

    return dependency


__all__ = [
    "get_current_token_data",
    "get_current_principal",
    "require_request_context",
    "get_request_context",
    "get_authorization_service",
    "require_permission",
]
