from __future__ import annotations

import pytest
from sqlalchemy import func, select

from app.seed import seed_initial_tenant
from config import Config
from db import SessionLocal
from models import Tenant
from tests.helpers import ADMIN_PASSWORD, api, ok_data, signup


def _tenant_count() -> int:
    with SessionLocal() as s:
        return s.execute(select(func.count()).select_from(Tenant)).scalar_one()


def test_validate_rejects_unknown_timezone(monkeypatch):
    monkeypatch.setenv("APP_TIMEZONE", "Mars/Olympus_Mons")
    with pytest.raises(RuntimeError, match="APP_TIMEZONE"):
        Config().validate()

    monkeypatch.setenv("APP_TIMEZONE", "America/Argentina/Buenos_Aires")
    Config().validate()


def test_validate_requires_seed_password(monkeypatch):
    monkeypatch.setenv("SEED_ADMIN_EMAIL", "root@boot.test")
    monkeypatch.delenv("SEED_ADMIN_PASSWORD", raising=False)
    with pytest.raises(RuntimeError, match="SEED_ADMIN_PASSWORD"):
        Config().validate()


def test_seed_creates_tenant_on_empty_database(app_client, monkeypatch):
    _app, client = app_client
    monkeypatch.setenv("SEED_ADMIN_EMAIL", "root@boot.test")
    monkeypatch.setenv("SEED_ADMIN_PASSWORD", ADMIN_PASSWORD)
    monkeypatch.setenv("SEED_TENANT_NAME", "Boot Co")

    seed_initial_tenant(Config())
    seed_initial_tenant(Config())
    assert _tenant_count() == 1

    token = ok_data(api(client, "LOGIN", {"email": "root@boot.test", "password": ADMIN_PASSWORD}))["sessionToken"]
    assert ok_data(api(client, "TENANT_GET", {}, token))["tenant"]["slug"] == "boot-co"


def test_seed_skips_populated_database(app_client, monkeypatch):
    _app, client = app_client
    signup(client)
    monkeypatch.setenv("SEED_ADMIN_EMAIL", "someone-new@boot.test")
    monkeypatch.setenv("SEED_ADMIN_PASSWORD", ADMIN_PASSWORD)

    seed_initial_tenant(Config())

    assert _tenant_count() == 1
    res = api(client, "LOGIN", {"email": "someone-new@boot.test", "password": ADMIN_PASSWORD})
    assert res.status_code == 401
