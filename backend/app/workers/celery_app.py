"""Celery application configuration."""

from celery import Celery

from app.core.config import settings

# Create Celery application
celery_app = Celery(
    "lifecycle",
    broker=str(settings.CELERY_BROKER_URL),
    backend=str(settings.CELERY_RESULT_BACKEND),
    include=["app.workers.tasks"],
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=3600,  # 1 hour max per task
    task_soft_time_limit=3300,  # 55 minutes soft limit
    worker_prefetch_multiplier=1,  # Fetch one task at a time
    worker_max_tasks_per_child=50,  # Restart worker after 50 tasks
)

# No beat schedule: periodic sweeps run on the API process's scheduler.
# The worker only serves sweeps triggered from the automation endpoints.

if __name__ == "__main__":
    celery_app.start()
