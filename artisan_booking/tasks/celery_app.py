from celery import Celery

from artisan_booking.core.config import settings

celery_app = Celery(
    "artisan_booking",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["artisan_booking.tasks.side_effects"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_ignore_result=True,
    task_soft_time_limit=30,
    task_time_limit=60,
    broker_connection_timeout=2,
)
