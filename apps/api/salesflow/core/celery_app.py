from celery import Celery

from salesflow.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "salesflow_api",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["salesflow.jobs"],
)
celery_app.conf.beat_schedule = {
    "process-sequences": {
        "task": "salesflow.tasks.process_sequences",
        "schedule": float(settings.sequence_tick_seconds),
    },
    "sync-email-accounts": {
        "task": "salesflow.tasks.sync_email_accounts",
        "schedule": float(settings.email_sync_interval_seconds),
    },
}
celery_app.conf.task_routes = {
    "salesflow.tasks.process_sequences": {"queue": "sequences"},
    "salesflow.tasks.sync_email_accounts": {"queue": "email-sync"},
    "salesflow.tasks.execute_workflow": {"queue": "workflows"},
}
