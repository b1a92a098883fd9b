"""
Process-local caches.

Two regions with their own TTL:
- `rbac`: role and permission lookups (keys under `RBAC:`), short lived because
  role edits must show up quickly on every worker.
- `dashboard`: KPI snapshots (keys under `DASHBOARD:`), keyed per tenant and day
  and dropped after every committed write for that tenant.

Keys are `NAMESPACE:tenant:...` so everything cached for a tenant can be dropped
at once.
"""
from __future__ import annotations

import hashlib
import json
import os
import threading
from typing import Any, Callable

from cachetools import TTLCache

_MISSING = object()


def _env_int(name: str, default: int, lo: int, hi: int) -> int:
    try:
        value = int(os.getenv(name, "") or default)
    except ValueError:
        value = default
    return max(lo, min(hi, value))


def make_cache_key(namespace: str, *, tenant_id: str = "", params: dict[str, Any] | None = None) -> str:
    ns = str(namespace or "").strip().upper()
    blob = json.dumps(params or {}, sort_keys=True, separators=(",", ":"), default=str)
    digest = hashlib.sha256(blob.encode("utf-8")).hexdigest()[:16]
    tenant = str(tenant_id or "").strip() or "-"
    return f"{ns}:{tenant}:{digest}"


class _Region:
    def __init__(self, name: str, *, ttl: int, maxsize: int):
        self.name = name
        self.data: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)
        self.hits = 0
        self.misses = 0


class TenantCache:
    """TTL caches split by key namespace, safe to share between request threads."""

    def __init__(self) -> None:
        maxsize = _env_int("CACHE_MAX_ITEMS", 20000, 100, 500_000)
        self._lock = threading.RLock()
        self._regions = {
            "RBAC": _Region("rbac", ttl=_env_int("CACHE_TTL_SECONDS", 60, 1, 3600), maxsize=maxsize),
            "DASHBOARD": _Region("dashboard", ttl=_env_int("DASHBOARD_CACHE_TTL_SECONDS", 300, 1, 86400), maxsize=maxsize // 10),
        }
        self._default = _Region("default", ttl=_env_int("CACHE_TTL_SECONDS", 60, 1, 3600), maxsize=maxsize)

    def _region(self, key: str) -> _Region:
        return self._regions.get(str(key).split(":", 1)[0], self._default)

    def get(self, key: str, default: Any = None) -> Any:
        region = self._region(key)
        with self._lock:
            value = region.data.get(key, _MISSING)
            if value is _MISSING:
                region.misses += 1
                return default
            region.hits += 1
            return value

    def set(self, key: str, value: Any) -> None:
        region = self._region(key)
        with self._lock:
            region.data[key] = value

    def get_or_set(self, key: str, factory: Callable[[], Any]) -> Any:
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value
        # Built outside the lock; a concurrent builder for the same key keeps the first value.
        computed = factory()
        region = self._region(key)
        with self._lock:
            return region.data.setdefault(key, computed)

    def invalidate_prefix(self, prefix: str) -> int:
        pfx = str(prefix or "")
        if not pfx:
            return 0
        removed = 0
        with self._lock:
            for region in (*self._regions.values(), self._default):
                for k in [k for k in list(region.data.keys()) if str(k).startswith(pfx)]:
                    region.data.pop(k, None)
                    removed += 1
        return removed

    def invalidate_tenant(self, tenant_id: str) -> int:
        tenant = str(tenant_id or "").strip()
        if not tenant:
            return 0
        return sum(self.invalidate_prefix(f"{ns}:{tenant}:") for ns in self._regions)

    def clear(self) -> None:
        with self._lock:
            for region in (*self._regions.values(), self._default):
                region.data.clear()
                region.hits = 0
                region.misses = 0

    def stats(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        with self._lock:
            for region in (*self._regions.values(), self._default):
                total = region.hits + region.misses
                out[region.name] = {
                    "size": len(region.data),
                    "maxsize": region.data.maxsize,
                    "ttl": region.data.ttl,
                    "hits": region.hits,
                    "misses": region.misses,
                    "hit_rate": round(region.hits / total * 100, 2) if total else 0.0,
                }
        return out


_cache = TenantCache()


def cache_get(key: str) -> Any:
    return _cache.get(key)


def cache_set(key: str, value: Any) -> None:
    _cache.set(key, value)


def cache_get_or_set(key: str, factory: Callable[[], Any]) -> Any:
    return _cache.get_or_set(key, factory)


def cache_invalidate_prefix(prefix: str) -> int:
    return _cache.invalidate_prefix(prefix)


def cache_invalidate_tenant(tenant_id: str) -> int:
    return _cache.invalidate_tenant(tenant_id)


def cache_invalidate_dashboard(tenant_id: str) -> int:
    return _cache.invalidate_prefix(f"DASHBOARD:{tenant_id}:")


def cache_clear() -> None:
    _cache.clear()


def cache_stats() -> dict[str, Any]:
    return _cache.stats()
