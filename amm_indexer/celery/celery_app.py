# celery_app.py  ─────────────────────────────────────────────────────────
from celery import Celery
from celery.schedules import crontab
import os
import logging
import logging.config

# ── 1.  Broker / backend  ────────────────────────────────────
CELERY_BROKER_URL    = os.getenv("CELERY_BROKER_URL", "redis://redis:6379/0")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://redis:6379/0")

celery_app = Celery(
    "amm_indexer_tasks",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
)

# ── 2.  Core config Beat & routing tweaks ─────────────────────
celery_app.conf.update(
    task_serializer       ='json',
    result_serializer     ='json',
    accept_content        =['json'],
    timezone              ='UTC',
    enable_utc            =True,

    # --- use RedBeat for persistent schedules
    beat_scheduler        ="redbeat.RedBeatScheduler",
    redbeat_redis_url     =os.getenv("REDIS_URL", CELERY_BROKER_URL),

    task_routes = {
        "dispatch_resync":   {"queue": "dispatch"},
        "discover_pairs":    {"queue": "orchestrate"},
        "backfill_events":   {"queue": "orchestrate"},
        "compute_snapshots": {"queue": "aggregate"},
    },

    # --- recycle workers to avoid long‑lived memory creep
    worker_max_tasks_per_child = 20,
)

# ── 3.  Beat schedule ───────────────────────────────────────
celery_app.conf.beat_schedule = {
    "half-hourly-resync": {
        "task": "dispatch_resync",
        "schedule": crontab(minute="*/30"),
        "options": {"queue": "dispatch"},
    },
    "hourly-snapshots": {
        "task": "compute_snapshots",
        "schedule": crontab(minute=5),               # after the bucket rolls over
        "options": {"queue": "aggregate"},
    },
}

# ── 4.  Logging ────────────────────────────────────────────
LOGGING_CONFIG = {
    "version": 1,
    "formatters": {
        "custom": {
            "format": "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        }
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "custom"},
    },
    "root": {"level": "INFO", "handlers": ["console"]},
}
celery_app.conf.worker_hijack_root_logger = False
logging.config.dictConfig(LOGGING_CONFIG)

# ── 5.  Task modules, so Celery registers them ───────────────
import amm_indexer.sources.amm_pipeline.ingestion.schedule_ingest  # noqa: E402,F401
import amm_indexer.scheduler.dispatcher  # noqa: E402,F401
