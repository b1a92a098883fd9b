from __future__ import annotations

import logging
from typing import Any

import requests

from app.tasks import celery_app

log = logging.getLogger("tasks")


@celery_app.task(
    bind=True,
    autoretry_for=(requests.RequestException,),
    retry_backoff=True,
    max_retries=5,
)
def deliver_notification_task(self, url: str, payload: dict[str, Any]):
    """POST one committed notification to the configured webhook."""
    res = requests.post(url, json=payload, timeout=10)
    res.raise_for_status()
    log.info(
        "task_id=%s notification=%s delivered status=%s",
        self.request.id,
        payload.get("notificationId", ""),
        res.status_code,
    )
    return {"notificationId": payload.get("notificationId", ""), "status": res.status_code}
