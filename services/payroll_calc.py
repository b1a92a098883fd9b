from __future__ import annotations

from typing import Any, Iterable

from utils import ApiError, round2, to_float


CONCEPT_TYPES = {"remunerativo", "no_remunerativo", "deduccion"}
CONCEPT_MODES = {"monto", "porcentaje"}

# Working days and hours used to derive day / hour rates from a monthly salary.
DAYS_PER_MONTH = 22
HOURS_PER_DAY = 8

PRESENTEEISM_RATE = 0.10
LATE_PENALTY_RATE = 0.005
LATE_DAYS_PER_PENALTY = 3

STATUTORY_DEDUCTIONS = [
    ("JUB", "Jubilación (11%)", 0.11),
    ("LEY19032", "Ley 19032 (3%)", 0.03),
    ("OS", "Obra Social (3%)", 0.03),
]

EMPLOYER_CONTRIBUTIONS = [
    ("CONT_JUB", "Contribución Jubilación", 10.17),
    ("CONT_OS", "Contribución Obra Social", 6.0),
    ("CONT_PAMI", "Contribución PAMI", 1.5),
    ("CONT_ART", "ART (Riesgo de Trabajo)", 3.0),
    ("CONT_ASIG", "Asignaciones Familiares", 4.44),
]


def normalize_concepts(raw: Any) -> list[dict[str, Any]]:
    if raw is None or raw == "":
        return []
    if not isinstance(raw, list):
        raise ApiError("BAD_REQUEST", "concepts must be a list")
    out: list[dict[str, Any]] = []
    for idx, c in enumerate(raw, start=1):
        if not isinstance(c, dict):
            raise ApiError("BAD_REQUEST", f"Concept #{idx} must be an object")
        name = str(c.get("name") or "").strip()
        ctype = str(c.get("type") or "").strip()
        mode = str(c.get("mode") or "monto").strip()
        if not name:
            raise ApiError("BAD_REQUEST", f"Concept #{idx} needs a name")
        if ctype not in CONCEPT_TYPES:
            raise ApiError("BAD_REQUEST", f"Concept #{idx} has invalid type: {ctype}")
        if mode not in CONCEPT_MODES:
            raise ApiError("BAD_REQUEST", f"Concept #{idx} has invalid mode: {mode}")
        try:
            value = float(c.get("value"))
        except (TypeError, ValueError):
            raise ApiError("BAD_REQUEST", f"Concept #{idx} value must be a number")
        if value < 0:
            raise ApiError("BAD_REQUEST", f"Concept #{idx} value must be >= 0")
        out.append({"id": str(c.get("id") or f"c{idx}"), "name": name, "type": ctype, "mode": mode, "value": value})
    return out


def compute_derived(
    *,
    baseSalary: Any,
    bonuses: Any = 0,
    overtimeHours: Any = 0,
    overtimeRate: Any = 0,
    deductions: Any = 0,
    taxRate: Any = 0,
    contributionsRate: Any = 0,
    concepts: Iterable[dict[str, Any]] | None = None,
) -> dict[str, float]:
    """Derived payroll totals.

    Concepts are applied in order. A `porcentaje` concept is a percentage of
    the gross accumulated so far, so its position in the list matters. Taxes
    and contributions are percentages of the final gross.
    """
    overtime_amount = to_float(overtimeHours) * to_float(overtimeRate)
    gross = to_float(baseSalary) + to_float(bonuses) + overtime_amount
    non_remunerative = 0.0
    concepts_deductions = 0.0

    for c in concepts or []:
        value = to_float(c.get("value"))
        amount = value if c.get("mode") == "monto" else gross * value / 100
        ctype = c.get("type")
        if ctype == "remunerativo":
            gross += amount
        elif ctype == "no_remunerativo":
            non_remunerative += amount
        elif ctype == "deduccion":
            concepts_deductions += amount

    taxes = gross * to_float(taxRate) / 100
    contributions = gross * to_float(contributionsRate) / 100
    net = gross + non_remunerative - to_float(deductions) - concepts_deductions - taxes - contributions

    return {
        "overtimeAmount": round2(overtime_amount),
        "gross": round2(gross),
        "nonRemuneratives": round2(non_remunerative),
        "conceptsDeductions": round2(concepts_deductions),
        "taxes": round2(taxes),
        "contributions": round2(contributions),
        "net": round2(net),
    }


def auto_concepts(
    base_salary: float,
    attendance: Iterable[dict[str, Any]],
    *,
    overtime_multiplier: float = 1.5,
    absence_rate: float = 1.0,
    include_overtime: bool = True,
    include_presenteeism: bool = True,
    include_absences: bool = True,
) -> dict[str, Any]:
    """Concepts and deductions for one month, from that month's attendance rows."""
    base = to_float(base_salary)
    hours_worked = 0.0
    overtime_hours = 0.0
    absent = 0
    late = 0
    for a in attendance:
        hours_worked += to_float(a.get("hoursWorked"))
        overtime_hours += to_float(a.get("overtimeHours"))
        if a.get("status") == "absent":
            absent += 1
        elif a.get("status") == "late":
            late += 1

    concepts: list[dict[str, Any]] = []
    deductions: list[dict[str, Any]] = []

    if include_overtime and overtime_hours > 0:
        hourly = base / DAYS_PER_MONTH / HOURS_PER_DAY
        concepts.append(
            {
                "code": "OT",
                "label": f"Horas Extra ({overtime_hours:.2f}hs x {overtime_multiplier:g}x)",
                "type": "remunerativo",
                "amount": round2(overtime_hours * hourly * overtime_multiplier),
                "taxable": True,
            }
        )
    if include_presenteeism and absent == 0 and late == 0:
        concepts.append(
            {
                "code": "PRES",
                "label": "Bono Presentismo (sin ausencias ni tardanzas)",
                "type": "no_remunerativo",
                "amount": round2(base * PRESENTEEISM_RATE),
                "taxable": False,
            }
        )
    if include_absences and absent > 0:
        deductions.append(
            {
                "code": "ABS",
                "label": f"Ausencias ({absent} día{'s' if absent > 1 else ''})",
                "amount": round2(absent * base / DAYS_PER_MONTH * absence_rate),
            }
        )
    if late >= LATE_DAYS_PER_PENALTY:
        deductions.append(
            {
                "code": "LATE",
                "label": f"Tardanzas ({late} días)",
                "amount": round2(base * LATE_PENALTY_RATE * (late // LATE_DAYS_PER_PENALTY)),
            }
        )
    for code, label, rate in STATUTORY_DEDUCTIONS:
        deductions.append({"code": code, "label": label, "amount": round2(base * rate)})

    return {
        "concepts": concepts,
        "deductions": deductions,
        "summary": {
            "totalConcepts": round2(sum(c["amount"] for c in concepts)),
            "totalDeductions": round2(sum(d["amount"] for d in deductions)),
            "totalHoursWorked": round2(hours_worked),
            "totalOvertimeHours": round2(overtime_hours),
            "daysAbsent": absent,
            "daysLate": late,
        },
    }


def employer_contributions(base_salary: float) -> dict[str, Any]:
    base = to_float(base_salary)
    items = [
        {"code": code, "label": label, "percentage": pct, "amount": round2(base * pct / 100)}
        for code, label, pct in EMPLOYER_CONTRIBUTIONS
    ]
    return {"contributions": items, "total": round2(sum(i["amount"] for i in items))}
