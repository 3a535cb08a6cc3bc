from celery import Celery
from metamirror.core.config import settings

celery_app = Celery("metamirror", broker=settings.redis_url, backend=settings.redis_url, include=["metamirror.tasks.runs"])
celery_app.conf.update(task_track_started=True, result_expires=3600, broker_connection_retry_on_startup=True,)
