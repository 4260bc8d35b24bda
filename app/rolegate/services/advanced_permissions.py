"""Per-assignment overlays and the merge rules for resolved permission entries.

Scopes, from broadest to narrowest: ``all``/``global`` (no restriction), ``hierarchy``
(restricted by ``conditions.maxRoleLevel``), ``tenant`` (restricted by
``conditions.allowedTenants``). A ``None`` field list means every field is visible.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Mapping

from app.rolegate.core.error_catalog import AppError, ErrorCatalog
from app.rolegate.core.logging import log_json
from app.rolegate.services.permission_catalog import PermissionKey, try_parse_permission_key

logger = logging.getLogger("rolegate.advanced_permissions")

SCOPE_ALL = "all"
SCOPE_GLOBAL = "global"
SCOPE_HIERARCHY = "hierarchy"
SCOPE_TENANT = "tenant"
VALID_SCOPES = (SCOPE_ALL, SCOPE_GLOBAL, SCOPE_HIERARCHY, SCOPE_TENANT)
SCOPE_RANK = {SCOPE_ALL: 0, SCOPE_GLOBAL: 0, SCOPE_HIERARCHY: 1, SCOPE_TENANT: 2}

ALLOWED_TENANTS = "allowedTenants"
MAX_ROLE_LEVEL = "maxRoleLevel"
ALL_FIELDS = "*"


@dataclass(frozen=True)
class EffectivePermission:
    key: PermissionKey
    granted: bool = False
    scope: str = SCOPE_ALL
    conditions: dict | None = None
    allowed_fields: tuple[str, ...] | None = None
    sources: tuple[str, ...] = ()

    def as_dict(self) -> dict:
        return {
            "resource": self.key.resource,
            "action": self.key.action,
            "code": self.key.code,
            "granted": self.granted,
            "scope": self.scope,
            "conditions": self.conditions,
            "allowed_fields": list(self.allowed_fields) if self.allowed_fields is not None else None,
            "sources": list(self.sources),
        }


@dataclass(frozen=True)
class OverlaySpec:
    key: PermissionKey
    scope: str = SCOPE_ALL
    conditions: dict | None = None
    allowed_fields: tuple[str, ...] | None = None

    def as_dict(self) -> dict:
        return {
            "resource": self.key.resource,
            "action": self.key.action,
            "scope": self.scope,
            "conditions": self.conditions,
            "allowed_fields": list(self.allowed_fields) if self.allowed_fields is not None else None,
        }


@dataclass(frozen=True)
class GrantSpec:
    """A permission granted to a custom role or directly to a principal."""

    key: PermissionKey
    scope: str | None = None
    conditions: dict | None = None
    allowed_fields: tuple[str, ...] | None = None

    @property
    def is_plain(self) -> bool:
        return self.scope is None and not self.conditions and self.allowed_fields is None

    def as_dict(self) -> dict:
        return {
            "code": self.key.code,
            "scope": self.scope,
            "conditions": self.conditions,
            "allowed_fields": list(self.allowed_fields) if self.allowed_fields is not None else None,
        }


@dataclass(frozen=True)
class PermissionContext:
    tenant_id: str | None = None
    target_role_level: int | None = None
    fields: tuple[str, ...] = field(default_factory=tuple)


def normalize_scope(value: str | None, *, default: str | None = SCOPE_ALL) -> str | None:
    if value is None or value == "":
        return default
    scope = str(value).strip().lower()
    if scope not in VALID_SCOPES:
        raise AppError(ErrorCatalog.INVALID_GRANT, details={"invalid_scope": value, "allowed": list(VALID_SCOPES)})
    return scope


def normalize_fields(value) -> tuple[str, ...] | None:
    if value is None:
        return None
    if isinstance(value, str):
        value = [value]
    fields = tuple(dict.fromkeys(str(item).strip() for item in value if str(item).strip()))
    if ALL_FIELDS in fields:
        return None
    return fields


def _get(payload: Any, *names: str):
    if isinstance(payload, Mapping):
        for name in names:
            if payload.get(name) is not None:
                return payload[name]
        return None
    for name in names:
        value = getattr(payload, name, None)
        if value is not None:
            return value
    return None


def _payload_key(payload: Any) -> PermissionKey | None:
    if isinstance(payload, (str, PermissionKey)):
        return try_parse_permission_key(payload)
    resource = _get(payload, "resource")
    action = _get(payload, "action")
    if resource and action:
        return try_parse_permission_key(f"{resource}:{action}")
    raw = _get(payload, "code", "key", "permission", "permissionId", "permission_id")
    if raw is None:
        log_json(logger, {"event": "malformed_permission_key", "value": str(payload)}, level=logging.WARNING)
        return None
    return try_parse_permission_key(raw)


def _invalid_condition(name: str, value: Any, expected: str) -> AppError:
    return AppError(
        ErrorCatalog.INVALID_GRANT,
        details={"condition": name, "value": str(value), "expected": expected},
    )


def _tenant_list(value: Any) -> list[str]:
    if isinstance(value, (str, bytes, Mapping)) or not isinstance(value, Iterable):
        raise _invalid_condition(ALLOWED_TENANTS, value, "list of tenant ids")
    return sorted({str(tenant) for tenant in value})


def _level_bound(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise _invalid_condition(MAX_ROLE_LEVEL, value, "integer")
    return value


def _payload_conditions(payload: Any, scope: str | None) -> dict | None:
    raw = _get(payload, "conditions") or {}
    if not isinstance(raw, Mapping):
        raise _invalid_condition("conditions", raw, "object")
    conditions = dict(raw)
    tenants = _get(payload, "tenantIds", "tenant_ids", "allowed_tenants")
    if tenants is not None:
        conditions[ALLOWED_TENANTS] = tenants
    if conditions.get(ALLOWED_TENANTS) is not None:
        conditions[ALLOWED_TENANTS] = _tenant_list(conditions[ALLOWED_TENANTS])
    max_level = _get(payload, "maxRoleLevel", "max_role_level")
    if max_level is not None and scope == SCOPE_HIERARCHY:
        conditions[MAX_ROLE_LEVEL] = max_level
    if conditions.get(MAX_ROLE_LEVEL) is not None:
        conditions[MAX_ROLE_LEVEL] = _level_bound(conditions[MAX_ROLE_LEVEL])
    return conditions or None


def _payload_fields(payload: Any) -> tuple[str, ...] | None:
    return normalize_fields(_get(payload, "fieldRestrictions", "field_restrictions", "allowedFields", "allowed_fields", "fields"))


def normalize_overlays(payloads: Iterable[Any] | None) -> list[OverlaySpec]:
    """Build overlay specs from request payloads; a later entry for the same key replaces an earlier one."""
    by_key: dict[PermissionKey, OverlaySpec] = {}
    for payload in payloads or []:
        key = _payload_key(payload)
        if key is None:
            continue
        scope = normalize_scope(None if isinstance(payload, str) else _get(payload, "scope"))
        if isinstance(payload, str):
            spec = OverlaySpec(key=key)
        else:
            spec = OverlaySpec(
                key=key,
                scope=scope,
                conditions=_payload_conditions(payload, scope),
                allowed_fields=_payload_fields(payload),
            )
        by_key.pop(key, None)
        by_key[key] = spec
    return list(by_key.values())


def normalize_grants(payloads: Iterable[Any] | None) -> list[GrantSpec]:
    """Build grant specs, dropping malformed keys; fails when every entry was malformed."""
    payloads = list(payloads or [])
    by_key: dict[PermissionKey, GrantSpec] = {}
    malformed: list[str] = []
    for payload in payloads:
        key = _payload_key(payload)
        if key is None:
            malformed.append(str(payload))
            continue
        if isinstance(payload, (str, PermissionKey)):
            spec = GrantSpec(key=key)
        else:
            scope = normalize_scope(_get(payload, "scope"), default=None)
            spec = GrantSpec(
                key=key,
                scope=scope,
                conditions=_payload_conditions(payload, scope),
                allowed_fields=_payload_fields(payload),
            )
        by_key.pop(key, None)
        by_key[key] = spec
    if payloads and not by_key:
        raise AppError(ErrorCatalog.MALFORMED_PERMISSION_KEY, details={"invalid": malformed})
    return list(by_key.values())


def _append_source(sources: tuple[str, ...], *extra: str) -> tuple[str, ...]:
    return tuple(dict.fromkeys(sources + tuple(extra)))


def apply_grant(entry: EffectivePermission, grant, source: str) -> EffectivePermission:
    """Grant ``entry`` from a role or direct grant row/spec carrying scope, conditions and fields."""
    return replace(
        entry,
        granted=True,
        scope=normalize_scope(getattr(grant, "scope", None)),
        conditions=dict(grant.conditions) if getattr(grant, "conditions", None) else None,
        allowed_fields=normalize_fields(getattr(grant, "allowed_fields", None)),
        sources=_append_source(entry.sources, source),
    )


def apply_overlay(entry: EffectivePermission, overlay, source: str = "overlay") -> EffectivePermission:
    """An overlay always grants and replaces scope, conditions and fields of the entry."""
    return replace(
        entry,
        granted=True,
        scope=normalize_scope(getattr(overlay, "scope", None)),
        conditions=dict(overlay.conditions) if getattr(overlay, "conditions", None) else None,
        allowed_fields=normalize_fields(getattr(overlay, "allowed_fields", None)),
        sources=_append_source(entry.sources, source),
    )


def _merge_fields(left: tuple[str, ...] | None, right: tuple[str, ...] | None) -> tuple[str, ...] | None:
    if left is None or right is None:
        return None
    return tuple(dict.fromkeys(left + right))


def _merge_equal_scope_conditions(left: dict | None, right: dict | None) -> dict | None:
    left = left or {}
    right = right or {}
    merged = {**left, **right}
    if ALLOWED_TENANTS in left and ALLOWED_TENANTS in right:
        merged[ALLOWED_TENANTS] = sorted(set(left[ALLOWED_TENANTS]) | set(right[ALLOWED_TENANTS]))
    else:
        merged.pop(ALLOWED_TENANTS, None)
    if MAX_ROLE_LEVEL in left and MAX_ROLE_LEVEL in right:
        merged[MAX_ROLE_LEVEL] = min(int(left[MAX_ROLE_LEVEL]), int(right[MAX_ROLE_LEVEL]))
    else:
        merged.pop(MAX_ROLE_LEVEL, None)
    return merged or None


def merge_entries(left: EffectivePermission, right: EffectivePermission) -> EffectivePermission:
    """Union two entries for the same key.

    Any grant wins. Between two grants the narrower scope wins; equal scopes union the
    tenant lists and keep the most permissive level bound. Fields are unrestricted when
    either grant is unrestricted.
    """
    if left.key != right.key:
        raise ValueError(f"cannot merge {left.key.code} with {right.key.code}")
    if not right.granted:
        return left if left.granted else replace(left, sources=_append_source(left.sources, *right.sources))
    if not left.granted:
        return replace(right, sources=_append_source(left.sources, *right.sources))

    sources = _append_source(left.sources, *right.sources)
    fields = _merge_fields(left.allowed_fields, right.allowed_fields)
    left_rank = SCOPE_RANK[left.scope]
    right_rank = SCOPE_RANK[right.scope]
    if left_rank > right_rank:
        return replace(left, allowed_fields=fields, sources=sources)
    if right_rank > left_rank:
        return replace(right, allowed_fields=fields, sources=sources)
    return replace(
        left,
        conditions=_merge_equal_scope_conditions(left.conditions, right.conditions),
        allowed_fields=fields,
        sources=sources,
    )


def check_context(entry: EffectivePermission, context: PermissionContext | None) -> bool:
    if not entry.granted:
        return False
    if context is None:
        return True
    conditions = entry.conditions or {}
    if entry.scope == SCOPE_TENANT and context.tenant_id is not None:
        allowed = conditions.get(ALLOWED_TENANTS)
        if allowed is not None and str(context.tenant_id) not in {str(item) for item in allowed}:
            return False
    if entry.scope == SCOPE_HIERARCHY and context.target_role_level is not None:
        bound = conditions.get(MAX_ROLE_LEVEL)
        if bound is not None and context.target_role_level < int(bound):
            return False
    if context.fields and entry.allowed_fields is not None:
        if any(name not in entry.allowed_fields for name in context.fields):
            return False
    return True


def filter_fields(entry: EffectivePermission, requested: Iterable[str] | None) -> list[str]:
    if not entry.granted:
        return []
    if requested is None:
        return list(entry.allowed_fields) if entry.allowed_fields is not None else [ALL_FIELDS]
    requested = list(requested)
    if entry.allowed_fields is None:
        return requested
    return [name for name in requested if name in entry.allowed_fields]
