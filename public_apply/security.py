"""
Bot traps for the public careers form.

- Honeypot: a hidden field humans leave empty.
- Timing: forms submitted faster than a person could fill them are rejected.
"""
from __future__ import annotations

import time

from flask import request

# Hidden field that should stay empty
HONEYPOT_FIELD = "_hp_check"

# Minimum time (ms) a human would take to fill the form
MIN_FORM_TIME_MS = 2000
MAX_FORM_AGE_MS = 3600000


def unix_timestamp_ms() -> int:
    return int(time.time() * 1000)


def validate_honeypot(honeypot_value) -> tuple[bool, str]:
    if honeypot_value and str(honeypot_value).strip():
        return False, "HONEYPOT_FILLED"
    return True, ""


def validate_timing(form_timestamp) -> tuple[bool, str]:
    """Missing timestamps pass; older clients do not send one."""
    try:
        ts = int(form_timestamp)
    except (ValueError, TypeError):
        return True, ""

    elapsed = unix_timestamp_ms() - ts
    if elapsed < 0:
        return False, "TIMING_INVALID"
    if elapsed < MIN_FORM_TIME_MS:
        return False, "TIMING_TOO_FAST"
    if elapsed > MAX_FORM_AGE_MS:
        return False, "TIMING_EXPIRED"
    return True, ""


def validate_bot_traps(honeypot_value, form_timestamp) -> tuple[bool, str]:
    """
    Combined honeypot + timing check.

    Returns (success, reason_for_logging). The reason is never sent to the client.
    """
    ok, reason = validate_honeypot(honeypot_value)
    if not ok:
        return False, reason
    return validate_timing(form_timestamp)


def get_client_ip() -> str:
    xff = request.headers.get("X-Forwarded-For", "")
    if xff:
        return xff.split(",")[0].strip()
    return request.remote_addr or ""
