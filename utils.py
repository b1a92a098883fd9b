from __future__ import annotations

import hashlib
import json
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo

from dateutil import parser as date_parser
from flask import jsonify


_DEFAULT_HTTP_STATUS = {
    "BAD_REQUEST": 400,
    "AUTH_INVALID": 401,
    "FORBIDDEN": 403,
    "NOT_FOUND": 404,
    "CONFLICT": 409,
    "RATE_LIMITED": 429,
    "INTERNAL": 500,
}


class ApiError(Exception):
    def __init__(self, code: str, message: str, http_status: int | None = None):
        super().__init__(message)
        self.code = str(code or "INTERNAL")
        self.message = str(message or "")
        self.http_status = int(http_status or _DEFAULT_HTTP_STATUS.get(self.code, 400))


@dataclass
class AuthContext:
    valid: bool
    userId: str
    email: str
    role: str
    expiresAt: str
    tenantId: str = ""
    employeeId: str = ""
    fullName: str = ""
    sessionId: str = ""


def ok(data: Any, http_status: int = 200):
    return jsonify({"ok": True, "data": data}), http_status


def err(code: str, message: str, http_status: int = 400):
    return jsonify({"ok": False, "error": {"code": code, "message": message}}), http_status


def iso_utc_now() -> str:
    return to_iso_utc(datetime.now(timezone.utc))


def to_iso_utc(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def today_iso() -> str:
    return datetime.now(timezone.utc).date().isoformat()


def parse_datetime_maybe(value: Any, *, app_timezone: str = "UTC") -> Optional[datetime]:
    """Parse an ISO-ish timestamp; naive values are interpreted in `app_timezone`."""
    s = str(value or "").strip()
    if not s:
        return None
    try:
        dt = date_parser.isoparse(s)
    except (ValueError, OverflowError):
        try:
            dt = date_parser.parse(s)
        except (ValueError, OverflowError):
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=ZoneInfo(app_timezone or "UTC"))
    return dt.astimezone(timezone.utc)


def parse_date_maybe(value: Any) -> Optional[date]:
    """Parse `YYYY-MM-DD` (or a full timestamp, keeping its UTC date)."""
    s = str(value or "").strip()
    if not s:
        return None
    if len(s) == 10:
        try:
            return date.fromisoformat(s)
        except ValueError:
            return None
    dt = parse_datetime_maybe(s)
    return dt.date() if dt else None


def new_uuid() -> str:
    return str(uuid.uuid4())


def short_id() -> str:
    return uuid.uuid4().hex[:12]


def normalize_role(role: Any) -> str:
    r = str(role or "").strip().upper().replace(" ", "_").replace("-", "_")
    return r


def parse_roles_csv(csv: str) -> list[str]:
    out: list[str] = []
    for part in str(csv or "").split(","):
        r = normalize_role(part)
        if r and r not in out:
            out.append(r)
    return out


def sha256_hex(value: str) -> str:
    return hashlib.sha256(str(value or "").encode("utf-8")).hexdigest()


def round2(value: Any) -> float:
    try:
        return round(float(value or 0) + 0.0, 2)
    except (TypeError, ValueError):
        return 0.0


def to_float(value: Any, default: float = 0.0) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def safe_json_string(value: Any, *, default: str = "") -> str:
    try:
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError):
        return default


def json_loads_list(raw: Any) -> list[Any]:
    if isinstance(raw, list):
        return raw
    s = str(raw or "").strip()
    if not s:
        return []
    try:
        val = json.loads(s)
    except ValueError:
        return []
    return val if isinstance(val, list) else []


def json_loads_dict(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    s = str(raw or "").strip()
    if not s:
        return {}
    try:
        val = json.loads(s)
    except ValueError:
        return {}
    return val if isinstance(val, dict) else {}


def parse_json_body(raw: str) -> dict[str, Any]:
    s = str(raw or "").strip()
    if not s:
        return {}
    try:
        body = json.loads(s)
    except ValueError:
        raise ApiError("BAD_REQUEST", "Invalid JSON body")
    if not isinstance(body, dict):
        raise ApiError("BAD_REQUEST", "JSON body must be an object")
    return body


_REDACT_KEYS = {"password", "currentpassword", "newpassword", "token", "idtoken", "sessiontoken", "secret", "bankinfo"}


def redact_for_audit(value: Any, *, _depth: int = 0) -> Any:
    if _depth > 6:
        return "..."
    if isinstance(value, dict):
        out: dict[str, Any] = {}
        for k, v in value.items():
            if str(k).lower() in _REDACT_KEYS:
                out[k] = "***"
            else:
                out[k] = redact_for_audit(v, _depth=_depth + 1)
        return out
    if isinstance(value, list):
        items = [redact_for_audit(v, _depth=_depth + 1) for v in value[:50]]
        if len(value) > 50:
            items.append(f"... +{len(value) - 50}")
        return items
    if isinstance(value, str) and len(value) > 500:
        return value[:500] + "..."
    return value


def now_monotonic() -> float:
    return time.monotonic()


class SimpleRateLimiter:
    """In-process sliding window limiter: at most `limit` hits per key per window."""

    def __init__(self, window_seconds: int = 60):
        self._window = max(1, int(window_seconds))
        self._hits: dict[str, deque] = {}
        self._lock = threading.Lock()

    def check(self, key: str, limit: int) -> None:
        now = now_monotonic()
        cutoff = now - self._window
        with self._lock:
            q = self._hits.setdefault(str(key), deque())
            while q and q[0] <= cutoff:
                q.popleft()
            if len(q) >= int(limit):
                raise ApiError("RATE_LIMITED", "Too many requests, please retry later")
            q.append(now)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
