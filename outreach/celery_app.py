"""
Celery configuration for the periodic delivery and quota sweeps

Start with:
    celery -A celery_worker.celery worker --loglevel=info
    celery -A celery_worker.celery beat --loglevel=info
"""
import logging
import os

from celery import Celery
from celery.schedules import crontab
from celery.signals import task_failure, task_postrun, task_prerun, worker_ready, worker_shutdown

logger = logging.getLogger(__name__)

celery_app = Celery('outreach')

celery_config = {
    # Broker and Backend
    'broker_url': os.getenv('CELERY_BROKER_URL', 'redis://localhost:6379/0'),
    'result_backend': os.getenv('CELERY_RESULT_BACKEND', 'redis://localhost:6379/0'),

    # Serialization
    'task_serializer': 'json',
    'accept_content': ['json'],
    'result_serializer': 'json',

    # Timezone
    'timezone': 'UTC',
    'enable_utc': True,

    'include': ['outreach.tasks.delivery_tasks'],

    # Worker configuration
    'worker_prefetch_multiplier': 1,
    'task_acks_late': True,

    'task_routes': {
        'outreach.tasks.delivery_tasks.*': {'queue': 'delivery'},
    },
    'task_default_queue': 'default',

    # Result backend settings
    'result_expires': 3600,

    # Task execution settings
    'task_time_limit': 300,
    'task_soft_time_limit': 240,
    'task_default_retry_delay': 60,

    'beat_schedule': {
        'send-scheduled-messages': {
            'task': 'outreach.tasks.delivery_tasks.send_scheduled_messages_task',
            'schedule': 60.0,
        },
        'send-due-campaigns': {
            'task': 'outreach.tasks.delivery_tasks.send_due_campaigns_task',
            'schedule': 60.0,
        },
        'reset-expired-quotas': {
            'task': 'outreach.tasks.delivery_tasks.reset_expired_quotas_task',
            'schedule': crontab(minute=0),
        },
    },
}

celery_app.conf.update(celery_config)


@worker_ready.connect
def worker_ready_handler(sender=None, **kwargs):
    logger.info("Celery worker ready to receive tasks")


@worker_shutdown.connect
def worker_shutdown_handler(sender=None, **kwargs):
    logger.info("Celery worker shutting down")


@task_prerun.connect
def task_prerun_handler(sender=None, task_id=None, task=None, **kwargs):
    logger.info(f"Starting task: {task.name} (ID: {task_id})")


@task_postrun.connect
def task_postrun_handler(sender=None, task_id=None, task=None, state=None, **kwargs):
    if state == 'SUCCESS':
        logger.info(f"Completed task: {task.name} (ID: {task_id})")
    else:
        logger.warning(f"Task finished with state {state}: {task.name} (ID: {task_id})")


@task_failure.connect
def task_failure_handler(sender=None, task_id=None, exception=None, **kwargs):
    logger.error(f"Task failed: {sender.name} (ID: {task_id}) - {exception}")


def create_celery_app(app=None):
    """
    Bind Celery to a Flask application so every task runs inside its app context
    """
    if app is not None:
        celery_app.conf.update(
            broker_url=app.config.get('CELERY_BROKER_URL', celery_config['broker_url']),
            result_backend=app.config.get('CELERY_RESULT_BACKEND', celery_config['result_backend']),
        )

        class ContextTask(celery_app.Task):
            """Make celery tasks work with Flask app context."""
            def __call__(self, *args, **kwargs):
                with app.app_context():
                    return self.run(*args, **kwargs)

        celery_app.Task = ContextTask
        logger.info("Celery app configured with Flask context")

    return celery_app
