from celery import Celery
from .config import settings

# Create Celery instance
celery_app = Celery(
    "pm_engine",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=[
        "pm_engine.tasks.pm_tasks",
    ]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=30 * 60,  # 30 minutes
    task_soft_time_limit=25 * 60,  # 25 minutes
    worker_prefetch_multiplier=1,
)

# Periodic task schedule, for deployments that run the jobs on workers
# instead of the in-process APScheduler. The escalation check already runs the
# compliance trigger; process_compliance_escalations is for on-demand runs.
celery_app.conf.beat_schedule = {
    'check-and-escalate-work-orders': {
        'task': 'pm_engine.tasks.pm_tasks.check_and_escalate_work_orders',
        'schedule': settings.ESCALATION_CHECK_INTERVAL_MINUTES * 60.0,
    },
    'run-pm-automation-tick': {
        'task': 'pm_engine.tasks.pm_tasks.run_pm_automation_tick',
        'schedule': settings.PM_AUTOMATION_INTERVAL_MINUTES * 60.0,
    },
}
