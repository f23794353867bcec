from celery import Celery

from engage.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "engage_api",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["engage.automation.tasks", "engage.workflows.tasks"],
)
celery_app.conf.beat_schedule = {
    "automation-scan": {
        "task": "engage.automation.run_scan",
        "schedule": float(settings.automation_scan_interval_seconds),
    },
}
celery_app.conf.task_serializer = "json"
celery_app.conf.result_serializer = "json"
celery_app.conf.accept_content = ["json"]
