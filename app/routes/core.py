from __future__ import annotations

import redis
from flask import Blueprint, current_app, jsonify

from cache_layer import cache_stats
from db import get_pool_stats, ping_db
from utils import iso_utc_now

core_bp = Blueprint("core", __name__)


def _redis_reachable(redis_url: str) -> bool:
    # Without a broker configured there is nothing to wait for.
    if not redis_url:
        return True
    try:
        return bool(redis.from_url(redis_url, socket_connect_timeout=2).ping())
    except redis.RedisError:
        return False


def _dependency_checks() -> dict[str, bool]:
    cfg = current_app.config["CFG"]
    return {"db": ping_db(), "redis": _redis_reachable(cfg.REDIS_URL)}


@core_bp.get("/health")
def health():
    cfg = current_app.config["CFG"]
    return jsonify(
        {
            "status": "ok",
            "time": iso_utc_now(),
            "version": cfg.APP_VERSION,
            "db": get_pool_stats(),
            "cache": cache_stats(),
        }
    )


@core_bp.get("/ready")
def ready():
    """Readiness check for the load balancer; 503 until the database and broker both answer."""
    cfg = current_app.config["CFG"]
    checks = _dependency_checks()
    healthy = all(checks.values())
    body = {
        "status": "ok" if healthy else "degraded",
        "time": iso_utc_now(),
        "version": cfg.APP_VERSION,
        "checks": {name: "ok" if up else "error" for name, up in checks.items()},
    }
    return jsonify(body), 200 if healthy else 503


@core_bp.get("/version")
def version():
    cfg = current_app.config["CFG"]
    return jsonify({"version": cfg.APP_VERSION, "env": cfg.ENV, "time": iso_utc_now()})
