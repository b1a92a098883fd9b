from __future__ import annotations

import logging
from typing import Any

from actions import dispatch
from app.tasks import celery_app
from config import Config
from db import SessionLocal, get_engine, init_engine
from utils import AuthContext, iso_utc_now

log = logging.getLogger("tasks")


def _ensure_engine(cfg: Config) -> None:
    if get_engine() is None:
        init_engine(cfg.DATABASE_URL)


@celery_app.task(bind=True, max_retries=2, default_retry_delay=30)
def build_report_task(self, tenantId: str, userId: str, role: str, action: str, data: dict[str, Any] | None = None):
    """
    Run a report action outside the request cycle.

    The caller was authorized when the job was enqueued; the worker rebuilds an
    equivalent AuthContext and runs the handler read-only.
    """
    cfg = Config()
    _ensure_engine(cfg)
    auth = AuthContext(valid=True, userId=userId, email="", role=role, expiresAt="", tenantId=tenantId)

    self.update_state(state="PROGRESS", meta={"progress": 0, "status": f"Running {action}"})
    db = SessionLocal()
    try:
        out = dispatch(action, data or {}, auth, db, cfg)
        db.rollback()
    finally:
        db.close()

    log.info("task_id=%s action=%s tenant=%s rows=%s", self.request.id, action, tenantId, len(out.get("rows") or []))
    return {"action": action, "tenantId": tenantId, "completedAt": iso_utc_now(), "result": out}
