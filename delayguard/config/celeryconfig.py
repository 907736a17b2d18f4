from datetime import timedelta

from .settings import settings

# Basic Celery Configuration
broker_url = settings.REDIS_URL
result_backend = settings.REDIS_URL

# Task Discovery
include = ["delayguard.tasks"]

# Timezone Configuration (calendar arithmetic is UTC-only)
timezone = "UTC"
enable_utc = True

# Task Result Configuration
result_expires = 3600

# Task Serialization
task_serializer = "json"
accept_content = ["json"]
result_serializer = "json"

# Task Execution Configuration
task_track_started = True
task_time_limit = 10 * 60  # 10 minutes
task_soft_time_limit = 8 * 60  # 8 minutes

# Worker Configuration
worker_prefetch_multiplier = 1
worker_max_tasks_per_child = 1000

# Task Retry Configuration
task_acks_late = True
task_reject_on_worker_lost = True
task_default_retry_delay = 60  # 60 seconds
task_max_retries = 3

# Queues
task_default_queue = "delayguard"
task_routes = {
    "delayguard.tasks.cron.poll_scheduler.poll_scheduler_task": {
        "queue": "poll-scheduler"
    },
    "delayguard.tasks.background.carrier_poll.carrier_poll_task": {
        "queue": "carrier-poll"
    },
}

# Redis priority support: 0 is consumed first, matching UrgencyTier ordering
broker_transport_options = {
    "priority_steps": list(range(10)),
    "sep": ":",
    "queue_order_strategy": "priority",
}
task_queue_max_priority = 9
task_default_priority = 4

# Poll scheduler tick; an expired tick is simply superseded by the next one
beat_schedule = {
    "poll-scheduler": {
        "task": "delayguard.tasks.cron.poll_scheduler.poll_scheduler_task",
        "schedule": timedelta(minutes=settings.POLL_SCHEDULER_INTERVAL_MINUTES),
        "args": ("poll_scheduler_cron",),
        "options": {"expires": settings.POLL_SCHEDULER_INTERVAL_MINUTES * 60},
    },
}

# Beat Scheduler Configuration
beat_schedule_filename = "tmp/celerybeat-schedule"
