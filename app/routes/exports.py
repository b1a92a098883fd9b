from __future__ import annotations

import logging

from flask import Blueprint, Response, current_app, request

from actions import dispatch
from actions.employees import EXPORT_COLUMNS
from actions.reports import CSV_REPORTS, rows_to_csv
from app.routes.api import client_ip, request_token
from auth import assert_permission, validate_session_token
from config import Config
from db import SessionLocal
from utils import ApiError, err, today_iso

exports_bp = Blueprint("exports", __name__, url_prefix="/api/v1")

log = logging.getLogger("api")


def _csv_download(kind: str, action: str, columns: list[str]):
    """Run `action` with the query string as input and stream its rows as CSV.

    Auth and permissions are the same as for the JSON action.
    """
    cfg: Config = current_app.config["CFG"]
    limiter = current_app.extensions["rate_limiter"]
    db = SessionLocal()
    try:
        limiter.check(f"{client_ip()}:API:{action}", cfg.RATE_LIMIT_DEFAULT)
        auth_ctx = validate_session_token(db, request_token(request.args.get("token")), action=action)
        if not auth_ctx.valid:
            raise ApiError("AUTH_INVALID", "Invalid or expired session")
        assert_permission(db, auth_ctx.role, action, auth_ctx.tenantId)

        params = {k: v for k, v in request.args.items() if k != "token"}
        out = dispatch(action, params, auth_ctx, db, cfg)
        db.rollback()
    except ApiError as e:
        db.rollback()
        return err(e.code, e.message, http_status=e.http_status)
    finally:
        db.close()

    rows = out.get("rows") or []
    if len(rows) > cfg.MAX_EXPORT_ROWS:
        log.warning("export %s truncated from %s to %s rows", kind, len(rows), cfg.MAX_EXPORT_ROWS)
    body = rows_to_csv(columns, rows, max_rows=cfg.MAX_EXPORT_ROWS)
    filename = f"{kind}-{today_iso()}.csv"
    return Response(
        body,
        mimetype="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@exports_bp.get("/reports/<kind>.csv")
def export_report_csv(kind: str):
    entry = CSV_REPORTS.get(kind)
    if entry is None:
        return err("NOT_FOUND", f"Unknown report: {kind}", http_status=404)
    action, columns = entry
    return _csv_download(kind, action, columns)


@exports_bp.get("/employees/export.csv")
def export_employees_csv():
    return _csv_download("employees", "EMPLOYEE_EXPORT", EXPORT_COLUMNS)
