"""
Celery application for periodic booking maintenance.

Run the worker and the beat scheduler with:
    celery -A backend.worker worker --loglevel=info
    celery -A backend.worker beat --loglevel=info
"""

import logging
from dataclasses import asdict
from datetime import timedelta

from celery import Celery

from backend.core import config
from backend.services.reaper_service import release_unpaid_reservations

logger = logging.getLogger(__name__)

RELEASE_TASK_NAME = 'backend.worker.release_unpaid_reservations_task'

celery_app = Celery('clinic_booking', broker=config.CELERY_BROKER_URL)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    task_ignore_result=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
)

celery_app.conf.beat_schedule = {
    'release-unpaid-reservations': {
        'task': RELEASE_TASK_NAME,
        'schedule': timedelta(minutes=config.REAPER_INTERVAL_MINUTES),
        # A sweep that waited past the next tick is superseded by it.
        'options': {'expires': config.REAPER_INTERVAL_MINUTES * 60},
    },
}


@celery_app.task(name=RELEASE_TASK_NAME)
def release_unpaid_reservations_task() -> dict:
    summary = release_unpaid_reservations()
    if summary.failed:
        logger.warning('%d reservations could not be released; retrying on the next run', summary.failed)
    return asdict(summary)
