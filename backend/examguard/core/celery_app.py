"""
Celery application for the periodic exam maintenance jobs.

Task bodies are coroutines (see ``AsyncTask``); each prefork child keeps a
single event loop for its lifetime so the async database engine is never
shared between loops.
"""
from celery import Celery
from celery.signals import worker_process_init, worker_process_shutdown
from examguard.core.config import settings
import asyncio
import logging

logger = logging.getLogger(__name__)

logging.getLogger('celery.backends.redis').setLevel(logging.ERROR)

_worker_loop = None


@worker_process_init.connect
def open_worker_loop(**kwargs):
    global _worker_loop
    _worker_loop = asyncio.new_event_loop()
    asyncio.set_event_loop(_worker_loop)
    logger.info("Event loop ready for exam maintenance worker")


@worker_process_shutdown.connect
def close_worker_loop(**kwargs):
    global _worker_loop
    if _worker_loop is not None:
        _worker_loop.close()
        _worker_loop = None
        asyncio.set_event_loop(None)


def get_worker_loop():
    return _worker_loop


celery_app = Celery(
    "examguard_worker",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=['examguard.tasks.maintenance'],
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    task_default_queue='maintenance',
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    # a sweep that overruns its slot is dropped, the next beat tick repeats it
    task_soft_time_limit=45,
    task_time_limit=55,
    result_expires=600,
    broker_connection_retry_on_startup=True,
    beat_schedule={
        'expire-overdue-sessions': {
            'task': 'examguard.tasks.maintenance.expire_overdue_sessions',
            'schedule': 60.0,
            'options': {'expires': 55},
        },
        'health-check': {
            'task': 'examguard.tasks.maintenance.health_check',
            'schedule': 600.0,
        },
    },
)
