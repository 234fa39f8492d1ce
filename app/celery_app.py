from celery import Celery
from app.config import settings

# Create Celery instance
celery_app = Celery(
    "placemarks",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["app.services.tasks"]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=5 * 60,
    task_soft_time_limit=4 * 60,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,
)

# Task routing
celery_app.conf.task_routes = {
    "app.services.tasks.sweep_search_cache": {"queue": "maintenance"},
}

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    "sweep-search-cache": {
        "task": "app.services.tasks.sweep_search_cache",
        "schedule": float(settings.search_sweep_interval_seconds),
    },
}

if __name__ == "__main__":
    celery_app.start()
