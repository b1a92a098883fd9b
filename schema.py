from __future__ import annotations

import logging

from sqlalchemy import inspect, text


_log = logging.getLogger("schema")


def _quoted(name: str) -> str:
    escaped = str(name).replace('"', '""')
    return f'"{escaped}"'


def _ensure_column(engine, *, table: str, column: str, ddl_type: str, default_sql: str = "''") -> None:
    insp = inspect(engine)
    cols = {c.get("name") for c in insp.get_columns(table)}
    if column in cols:
        return
    ddl = f"ALTER TABLE {_quoted(table)} ADD COLUMN {_quoted(column)} {ddl_type} DEFAULT {default_sql}"
    with engine.begin() as conn:
        conn.execute(text(ddl))
    _log.info("added column %s.%s", table, column)


def _ensure_index(engine, *, name: str, table: str, columns: list[str], unique: bool = False, where: str = "") -> None:
    cols = ", ".join(_quoted(c) for c in columns)
    kind = "UNIQUE INDEX" if unique else "INDEX"
    ddl = f"CREATE {kind} IF NOT EXISTS {_quoted(name)} ON {_quoted(table)}({cols})"
    if where:
        ddl += f" WHERE {where}"
    _ensure_ddl(engine, ddl)


def _ensure_ddl(engine, ddl: str) -> None:
    with engine.begin() as conn:
        conn.execute(text(ddl))


# (index name, table, columns) for the hot tenant-scoped list queries.
_TENANT_INDEXES: list[tuple[str, str, list[str]]] = [
    ("ix_candidates_tenant_created", "candidates", ["tenantId", "createdAt"]),
    ("ix_candidates_tenant_status", "candidates", ["tenantId", "status"]),
    ("ix_vacancies_tenant_status_updated", "vacancies", ["tenantId", "status", "updatedAt"]),
    ("ix_applications_tenant_vacancy_status_order", "applications", ["tenantId", "vacancyId", "status", "orderNo"]),
    ("ix_employees_tenant_status", "employees", ["tenantId", "status"]),
    ("ix_employees_tenant_department", "employees", ["tenantId", "department"]),
    ("ix_attendance_tenant_date", "attendance", ["tenantId", "date"]),
    ("ix_attendance_tenant_emp_date", "attendance", ["tenantId", "employeeId", "date"]),
    ("ix_leaves_tenant_emp_start", "leaves", ["tenantId", "employeeId", "startDate"]),
    ("ix_leaves_tenant_status", "leaves", ["tenantId", "status"]),
    ("ix_payrolls_tenant_period", "payrolls", ["tenantId", "period"]),
    ("ix_evaluations_tenant_cycle_status", "evaluations", ["tenantId", "cycleId", "status"]),
    ("ix_notifications_user_read_created", "notifications", ["tenantId", "userId", "isRead", "createdAt"]),
    ("ix_workflows_tenant_status_created", "workflows", ["tenantId", "status", "createdAt"]),
    ("ix_audit_log_tenant_at", "audit_log", ["tenantId", "at"]),
]


def ensure_schema(engine) -> None:
    """
    Lightweight, idempotent schema evolution (no Alembic).

    `create_all` creates missing tables but never alters existing ones, so columns
    added after a table first shipped are back-filled here, followed by composite
    and partial indexes that the ORM declarations cannot express portably.
    """
    _ensure_column(engine, table="users", column="employeeId", ddl_type="TEXT")
    _ensure_column(engine, table="users", column="authVersion", ddl_type="INTEGER", default_sql="0")
    _ensure_column(engine, table="sessions", column="tenantId", ddl_type="TEXT")
    _ensure_column(engine, table="audit_log", column="tenantId", ddl_type="TEXT")
    _ensure_column(engine, table="employees", column="jobHistoryJson", ddl_type="TEXT")
    _ensure_column(engine, table="payrolls", column="historyJson", ddl_type="TEXT")

    for name, table, columns in _TENANT_INDEXES:
        _ensure_index(engine, name=name, table=table, columns=columns)

    # Employee national ids are unique per tenant only when present.
    _ensure_index(
        engine,
        name="uq_employees_tenant_dni",
        table="employees",
        columns=["tenantId", "dni"],
        unique=True,
        where="\"dni\" <> ''",
    )
    _ensure_index(
        engine,
        name="uq_employees_tenant_cuil",
        table="employees",
        columns=["tenantId", "cuil"],
        unique=True,
        where="\"cuil\" <> ''",
    )
