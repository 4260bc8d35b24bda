from dataclasses import dataclass

from fastapi import Request


@dataclass(frozen=True)
class PrincipalContext:
    """Authenticated principal as handed over by the authentication layer."""

    id: str
    tenant_id: str
    is_active: bool


@dataclass(frozen=True)
class RequestContext:
    user_id: str | None
    tenant_id: str | None
    trace_id: str


def build_request_context(
    *,
    user_id: str | None,
    tenant_id: str | None,
    trace_id: str,
) -> RequestContext:
    return RequestContext(
        user_id=user_id,
        tenant_id=tenant_id,
        trace_id=trace_id,
    )


def get_request_context(request: Request) -> RequestContext:
    context = getattr(request.state, "context", None)
    if isinstance(context, RequestContext):
        return context
    return build_request_context(
        user_id=getattr(request.state, "user_id", None),
        tenant_id=getattr(request.state, "tenant_id", None),
        trace_id=getattr(request.state, "trace_id", ""),
    )
