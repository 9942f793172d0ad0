"""
Celery application configuration.

The worker persists live device readings handed over by the API and polls
every registered device on a beat schedule.
"""
from celery import Celery
import redis
import logging
import time
from celery.signals import worker_shutdown, worker_ready, task_failure, task_retry

from tasmota_admin.core.env_settings import env

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

# Filter out noisy loggers
logging.getLogger('celery').setLevel(logging.WARNING)
logging.getLogger('celery.task').setLevel(logging.WARNING)
logging.getLogger('celery.worker').setLevel(logging.WARNING)

app = Celery(
    'tasmota_admin',
    broker=env.REDIS_URL,
    backend=env.REDIS_URL,
    include=[
        'tasmota_admin.core.tasks.device_tasks',
    ]
)

app.conf.update(
    # Serialization
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',

    # Device polling runs its own event loop per task
    worker_pool='solo',
    worker_concurrency=1,
    worker_max_tasks_per_child=100,

    # Task execution
    task_time_limit=120,
    task_soft_time_limit=90,
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # Timezone
    timezone='UTC',
    enable_utc=True,

    # Logging
    worker_redirect_stdouts=False,
    worker_redirect_stdouts_level='ERROR',
    worker_log_format=LOG_FORMAT,
    worker_task_log_format='%(asctime)s - %(name)s - %(levelname)s - %(task_name)s[%(task_id)s] - %(message)s',
    worker_hijack_root_logger=False,

    beat_max_loop_interval=5,
    beat_schedule={
        'refresh-all-devices': {
            'task': 'tasmota_admin.core.tasks.device_tasks.refresh_all_devices',
            'schedule': env.DEVICE_POLL_INTERVAL_SECONDS,
            # Expire before the next run to prevent overlap
            'options': {'expires': max(env.DEVICE_POLL_INTERVAL_SECONDS - 5, 1)},
        },
    }
)


@worker_ready.connect
def on_worker_ready(**kwargs):
    """Validate the broker connection on worker startup."""
    logger.info("Worker started - validating service connections")
    try:
        redis_client = redis.Redis.from_url(env.REDIS_URL, socket_timeout=2.0)
        redis_client.ping()
        logger.info("Redis connection verified")
    except redis.RedisError as e:
        logger.error(f"Redis connection error: {e}")


@task_failure.connect
def log_task_failure(sender=None, task_id=None, exception=None, args=None, kwargs=None, **_):
    """Log detailed task failure information."""
    logger.error(
        f"Task {sender.name}[{task_id}] failed: {exception}\n"
        f"  Args: {args}\n"
        f"  Kwargs: {kwargs}"
    )


@task_retry.connect
def log_task_retry(sender=None, request=None, reason=None, einfo=None, **_):
    logger.warning(
        f"Task {sender.name} retrying: {reason}\n"
        f"  Args: {request.args}\n"
        f"  Kwargs: {request.kwargs}"
    )


@worker_shutdown.connect
def cleanup_resources(**_):
    logger.info("Worker shutting down - cleaning up resources")
    # Give in-progress tasks a moment to finish
    time.sleep(0.5)
