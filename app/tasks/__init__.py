"""
Celery app for webhook delivery and background reports.

Usage:
    celery -A app.tasks.celery_app worker -Q notifications,reports --loglevel=INFO
"""
from __future__ import annotations

from celery import Celery

from config import Config

TASK_QUEUES = ("notifications", "reports")


def make_celery(cfg: Config | None = None) -> Celery:
    """
    Celery app on the Redis broker from `REDIS_URL`.

    Results go to `CELERY_RESULT_BACKEND` when set, otherwise to the broker, so
    `/api/v1/jobs/<id>` can read report results back.
    """
    cfg = cfg or Config()
    broker = cfg.REDIS_URL or "redis://localhost:6379/0"

    app = Celery(
        "talenthr",
        broker=broker,
        backend=cfg.CELERY_RESULT_BACKEND or broker,
        include=["app.tasks.notifications", "app.tasks.reports"],
    )

    app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone=cfg.APP_TIMEZONE or "UTC",
        enable_utc=True,
        task_routes={
            "app.tasks.notifications.*": {"queue": "notifications"},
            "app.tasks.reports.*": {"queue": "reports"},
        },
        task_default_queue="notifications",
        # report results are polled, one day is plenty
        result_expires=86400,
        task_track_started=True,
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,
        worker_concurrency=cfg.CELERY_CONCURRENCY,
        task_default_retry_delay=60,
        task_always_eager=cfg.CELERY_TASK_ALWAYS_EAGER,
    )

    return app


celery_app = make_celery()
