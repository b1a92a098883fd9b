from __future__ import annotations

import gzip
import logging

from flask import Flask, g, request

from config import Config

logger = logging.getLogger("api")

COMPRESSIBLE_MIMETYPES = frozenset({"application/json", "text/csv"})


def _wants_gzip() -> bool:
    return "gzip" in request.headers.get("Accept-Encoding", "").lower()


def _compressible(response) -> bool:
    if not 200 <= response.status_code < 300:
        return False
    if response.direct_passthrough or "Content-Encoding" in response.headers:
        return False
    return response.mimetype in COMPRESSIBLE_MIMETYPES


def init_compression(app: Flask, cfg: Config) -> None:
    """Gzip API payloads and CSV exports once they pass COMPRESSION_MIN_SIZE bytes."""
    if not cfg.ENABLE_COMPRESSION:
        return

    @app.after_request
    def _compress(response):
        if not _wants_gzip() or not _compressible(response):
            return response

        body = response.get_data()
        if len(body) < cfg.COMPRESSION_MIN_SIZE:
            return response

        try:
            packed = gzip.compress(body, compresslevel=cfg.COMPRESSION_LEVEL)
        except (OSError, ValueError):
            logger.warning("request_id=%s gzip failed, sending identity", getattr(g, "request_id", ""))
            return response

        if len(packed) >= len(body):
            return response
        response.set_data(packed)
        response.headers["Content-Encoding"] = "gzip"
        response.headers["Vary"] = "Accept-Encoding"
        return response
