from __future__ import annotations

import pytest

from tests.helpers import signup


@pytest.fixture()
def app_client(tmp_path, monkeypatch):
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'test.db'}")
    monkeypatch.setenv("AUTH_ALLOW_TEST_TOKENS", "1")
    monkeypatch.setenv("ENABLE_COMPRESSION", "0")
    for name in ("REDIS_URL", "NOTIFY_WEBHOOK_URL", "SEED_ADMIN_EMAIL", "SEED_ADMIN_PASSWORD", "GOOGLE_CLIENT_ID"):
        monkeypatch.delenv(name, raising=False)

    from cache_layer import cache_clear

    cache_clear()

    from app import create_app

    app = create_app()
    app.config["TESTING"] = True
    with app.test_client(use_cookies=False) as client:
        yield app, client
    cache_clear()


@pytest.fixture()
def tenant(app_client):
    _app, client = app_client
    return signup(client)
