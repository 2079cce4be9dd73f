"""
Celery application configuration.
"""

from celery import Celery
from celery.schedules import crontab

from aquabeacon.config import settings

celery_app = Celery(
    "aquabeacon",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "aquabeacon.workers.payment_expiry",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="Africa/Nairobi",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # 5 minutes
    worker_prefetch_multiplier=1,
    task_acks_late=True,
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    # Sweep payments whose STK prompt was never answered
    "expire-stale-payments": {
        "task": "aquabeacon.workers.payment_expiry.expire_stale_payments",
        "schedule": crontab(minute="*/5"),
    },
}
