from celery import Celery

from leadcrm.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "leadcrm",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["leadcrm.reporting.tasks"],
)
celery_app.conf.update(
    task_always_eager=settings.celery_task_always_eager,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
)
