# priority_service/celery_app.py
from celery import Celery

from priority_service.core.config import get_settings

settings = get_settings()

celery_app = Celery("priority_service")
celery_app.conf.update(
    **settings.get_celery_config(),
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
)

# import tasks so the worker registers them
celery_app.autodiscover_tasks(["priority_service"], related_name="tasks")
