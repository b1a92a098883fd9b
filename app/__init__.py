from __future__ import annotations

import logging

from dotenv import load_dotenv
from flask import Flask
from flask_cors import CORS

from app.middlewares.compression import init_compression
from app.middlewares.error_handler import init_error_handlers
from app.middlewares.request_id import init_request_id
from app.middlewares.security_headers import init_security_headers
from app.routes.api import api_bp
from app.routes.core import core_bp
from app.routes.exports import exports_bp
from app.routes.jobs import jobs_bp
from app.routes.rest import rest_api
from app.seed import seed_initial_tenant
from config import Config
from db import Base, init_engine
from public_apply.routes import careers_bp
from schema import ensure_schema
from utils import SimpleRateLimiter


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def create_app() -> Flask:
    load_dotenv()
    cfg = Config()
    cfg.validate()
    _configure_logging(cfg.LOG_LEVEL)

    engine = init_engine(cfg.DATABASE_URL)

    import models  # noqa: F401  registers tables on Base

    Base.metadata.create_all(bind=engine)
    ensure_schema(engine)
    seed_initial_tenant(cfg)

    app = Flask(__name__)
    app.config["CFG"] = cfg
    app.config["JSON_SORT_KEYS"] = False
    app.extensions["rate_limiter"] = SimpleRateLimiter()

    CORS(
        app,
        origins=cfg.ALLOWED_ORIGINS,
        supports_credentials=True,
        allow_headers=["Content-Type", "Authorization", "X-Request-ID", "X-Session-Token"],
        expose_headers=["X-Request-ID", "Content-Disposition"],
        methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        max_age=3600,
    )

    init_request_id(app)
    init_security_headers(app)
    init_compression(app, cfg)
    init_error_handlers(app)

    app.register_blueprint(core_bp)
    app.register_blueprint(api_bp)
    # exports before rest so "/reports/<kind>.csv" is not swallowed by "/reports/<kind>"
    app.register_blueprint(exports_bp)
    app.register_blueprint(rest_api)
    app.register_blueprint(jobs_bp)
    app.register_blueprint(careers_bp)

    return app
