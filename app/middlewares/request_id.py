from __future__ import annotations

import os
import re

from flask import Flask, g, request

from utils import now_monotonic

_SAFE_ID = re.compile(r"^[A-Za-z0-9._-]{6,64}$")


def init_request_id(app: Flask) -> None:
    """Echo a sane inbound X-Request-ID or mint one; available as `g.request_id`."""

    @app.before_request
    def _assign_request_id():
        inbound = str(request.headers.get("X-Request-ID") or "").strip()
        g.request_id = inbound if _SAFE_ID.match(inbound) else os.urandom(8).hex()
        g.start_ts = now_monotonic()

    @app.after_request
    def _echo_request_id(resp):
        rid = str(getattr(g, "request_id", "") or "")
        if rid:
            resp.headers["X-Request-ID"] = rid
        return resp
