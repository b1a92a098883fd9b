from __future__ import annotations

import logging

from sqlalchemy import func, select

from actions.tenants import create_tenant_with_admin
from config import Config
from db import SessionLocal
from models import User

log = logging.getLogger("seed")


def seed_initial_tenant(cfg: Config) -> None:
    """Create the bootstrap tenant and its admin on an empty database when SEED_ADMIN_EMAIL is set."""
    if not cfg.SEED_ADMIN_EMAIL:
        return

    db0 = SessionLocal()
    try:
        if db0.execute(select(func.count()).select_from(User)).scalar_one():
            log.info("users already present, skipping seed")
            return
        name = cfg.SEED_TENANT_NAME or "Default Company"
        tenant, user = create_tenant_with_admin(
            db0,
            name=name,
            email=cfg.SEED_ADMIN_EMAIL,
            plan="free",
            admin_email=cfg.SEED_ADMIN_EMAIL,
            admin_name="Administrator",
            admin_password=cfg.SEED_ADMIN_PASSWORD,
        )
        db0.commit()
        log.info("seeded tenant=%s slug=%s admin=%s", tenant.tenantId, tenant.slug, user.email)
    except Exception:
        db0.rollback()
        raise
    finally:
        db0.close()
