# =============================================================================
# workers/config.py - Celery Worker Configuration
# =============================================================================
# Settings specific to Celery workers.
# =============================================================================

from celery.schedules import crontab

from app.config import settings


class CeleryConfig:
    """
    Celery configuration settings.

    These are applied to the Celery app via app.config_from_object().
    """

    # -------------------------------------------------------------------------
    # Broker Settings (Redis)
    # -------------------------------------------------------------------------

    broker_url = settings.REDIS_URL
    result_backend = settings.REDIS_URL

    # -------------------------------------------------------------------------
    # Task Settings
    # -------------------------------------------------------------------------

    # Acknowledge after completion so a crashed worker's task is redelivered
    task_acks_late = True

    # Analysis calls are long; don't let one worker hoard them
    worker_prefetch_multiplier = 1

    result_expires = 3600

    # Analysis retries back off 2s + 4s on top of a 120s HTTP timeout per call
    task_time_limit = 600
    task_soft_time_limit = 540

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    # JSON only; export options are plain dicts
    task_serializer = "json"
    result_serializer = "json"
    accept_content = ["json"]

    # -------------------------------------------------------------------------
    # Task Routing
    # -------------------------------------------------------------------------

    task_queues = {
        "default": {
            "exchange": "default",
            "routing_key": "default",
        },
        "analysis": {
            "exchange": "analysis",
            "routing_key": "analysis",
        },
        "exports": {
            "exchange": "exports",
            "routing_key": "exports",
        },
    }

    task_routes = {
        "workers.tasks.run_case_analysis": {"queue": "analysis"},
        "workers.tasks.recalculate_case_pmi": {"queue": "analysis"},
        "workers.tasks.generate_case_export": {"queue": "exports"},
        "workers.tasks.generate_image_export": {"queue": "exports"},
    }

    task_default_queue = "default"

    # -------------------------------------------------------------------------
    # Periodic Tasks
    # -------------------------------------------------------------------------

    beat_schedule = {
        "purge-due-account-deletions": {
            "task": "workers.tasks.purge_due_account_deletions",
            "schedule": crontab(minute=0),
        },
    }

    # -------------------------------------------------------------------------
    # Monitoring
    # -------------------------------------------------------------------------

    worker_send_task_events = True
    task_send_sent_event = True

    # -------------------------------------------------------------------------
    # Timezone
    # -------------------------------------------------------------------------

    timezone = "UTC"
    enable_utc = True
