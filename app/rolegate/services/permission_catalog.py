from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable

from app.rolegate.core.error_catalog import AppError, ErrorCatalog
from app.rolegate.core.logging import log_json
from app.rolegate.repos.permissions import PermissionRepository

logger = logging.getLogger("rolegate.permissions")

READ_ONLY_ACTIONS = frozenset({"view", "read"})

_SEGMENT = re.compile(r"^[a-z][a-z0-9_.-]*$")
_LEGACY = re.compile(r"^([A-Za-z]+)_([A-Za-z][A-Za-z0-9_]*)$")


@dataclass(frozen=True, order=True)
class PermissionKey:
    resource: str
    action: str

    @property
    def code(self) -> str:
        return f"{self.resource}:{self.action}"

    @property
    def is_read_only(self) -> bool:
        return self.action in READ_ONLY_ACTIONS

    def __str__(self) -> str:
        return self.code


@dataclass(frozen=True)
class CatalogEntry:
    key: PermissionKey
    name: str
    description: str | None
    tenant_id: str | None


def parse_permission_key(raw) -> PermissionKey:
    """Parse ``resource:action`` or the legacy ``ACTION_RESOURCE`` form.

    ``VIEW_COMPANIES`` becomes ``companies:view``; the action is everything before the
    first underscore.
    """
    if isinstance(raw, PermissionKey):
        return raw
    if not isinstance(raw, str):
        raise AppError(ErrorCatalog.MALFORMED_PERMISSION_KEY, details={"value": repr(raw)})
    value = raw.strip()
    if ":" in value:
        resource, _, action = value.partition(":")
        resource = resource.strip().lower()
        action = action.strip().lower()
        if _SEGMENT.match(resource) and _SEGMENT.match(action):
            return PermissionKey(resource=resource, action=action)
        raise AppError(ErrorCatalog.MALFORMED_PERMISSION_KEY, details={"value": raw})
    match = _LEGACY.match(value)
    if match:
        action, resource = match.group(1).lower(), match.group(2).lower()
        return PermissionKey(resource=resource, action=action)
    raise AppError(ErrorCatalog.MALFORMED_PERMISSION_KEY, details={"value": raw})


def try_parse_permission_key(raw) -> PermissionKey | None:
    try:
        return parse_permission_key(raw)
    except AppError:
        log_json(
            logger,
            {"event": "malformed_permission_key", "value": str(raw)},
            level=logging.WARNING,
        )
        return None


def parse_permission_keys(raws: Iterable) -> list[PermissionKey]:
    """Parse a batch, dropping malformed entries.

    Fails only when the batch was non-empty and nothing in it could be parsed.
    """
    raws = list(raws or [])
    keys: list[PermissionKey] = []
    seen: set[PermissionKey] = set()
    malformed: list[str] = []
    for raw in raws:
        key = try_parse_permission_key(raw)
        if key is None:
            malformed.append(str(raw))
            continue
        if key in seen:
            continue
        seen.add(key)
        keys.append(key)
    if raws and not keys:
        raise AppError(ErrorCatalog.MALFORMED_PERMISSION_KEY, details={"invalid": malformed})
    return keys


class PermissionCatalogService:
    def __init__(self, db, cache: dict | None = None):
        self.repo = PermissionRepository(db)
        self.cache = cache if cache is not None else {}

    def list_entries(self, tenant_id=None) -> list[CatalogEntry]:
        cache_key = f"catalog:{tenant_id}"
        if cache_key in self.cache:
            return self.cache[cache_key]
        entries: list[CatalogEntry] = []
        for row in self.repo.list_catalog(tenant_id):
            key = try_parse_permission_key(row.code)
            if key is None:
                continue
            entries.append(
                CatalogEntry(
                    key=key,
                    name=row.name,
                    description=row.description,
                    tenant_id=str(row.tenant_id) if row.tenant_id else None,
                )
            )
        entries.sort(key=lambda entry: entry.key)
        self.cache[cache_key] = entries
        return entries

    def list_keys(self, tenant_id=None) -> list[PermissionKey]:
        return [entry.key for entry in self.list_entries(tenant_id)]

    def list_grouped(self, tenant_id=None) -> dict[str, list[CatalogEntry]]:
        grouped: dict[str, list[CatalogEntry]] = {}
        for entry in self.list_entries(tenant_id):
            grouped.setdefault(entry.key.resource, []).append(entry)
        return dict(sorted(grouped.items()))

    def describe(self, key, tenant_id=None) -> CatalogEntry:
        parsed = parse_permission_key(key)
        for entry in self.list_entries(tenant_id):
            if entry.key == parsed:
                return entry
        raise AppError(ErrorCatalog.NOT_FOUND, details={"entity": "permission", "code": parsed.code})

    def require_known(self, keys: Iterable[PermissionKey], tenant_id=None) -> dict[PermissionKey, object]:
        """Map each key to its active catalog row, or raise INVALID_GRANT listing the unknown ones."""
        keys = list(keys)
        rows = self.repo.list_by_codes([key.code for key in keys], tenant_id)
        by_code = {row.code: row for row in rows if row.is_active}
        invalid = sorted({key.code for key in keys if key.code not in by_code})
        if invalid:
            raise AppError(ErrorCatalog.INVALID_GRANT, details={"invalid": invalid})
        return {key: by_code[key.code] for key in keys}
