import os
from celery import Celery
from celery.schedules import crontab

# Set the default Django settings module for the 'celery' program.
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'talktotext.settings')

app = Celery('talktotext')

# Using a string here means the worker doesn't have to serialize
# the configuration object to child processes.
app.config_from_object('django.conf:settings', namespace='CELERY')

# Load task modules from all registered Django apps.
app.autodiscover_tasks()

# Task routing configuration
app.conf.task_routes = {
    # Billing related tasks
    "billing.tasks.process_stripe_event_async": {"queue": "billing"},
    "billing.tasks.cleanup_webhook_event_logs": {"queue": "billing"},

    # Transcription pipeline
    "transcriptions.tasks.process_transcription_job": {"queue": "transcriptions"},
    "transcriptions.tasks.sweep_stuck_transcription_jobs": {"queue": "maintenance"},

    # Default queue
    '*': {'queue': 'default'},
}

app.conf.task_default_queue = 'default'

app.conf.update(
    # Serialization settings
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',

    # Timezone settings
    timezone='UTC',
    enable_utc=True,

    # Task execution settings
    task_track_started=True,
    task_time_limit=30 * 60,
    task_soft_time_limit=25 * 60,

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,

    # A job that dies mid-submission is redelivered; process_job is a no-op
    # once the job has left "processing".
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # Monitoring settings
    worker_send_task_events=True,
    task_send_sent_event=True,

    # Queue settings
    task_queues={
        'default': {
            'exchange': 'default',
            'routing_key': 'default',
        },
        'billing': {
            'exchange': 'billing',
            'routing_key': 'billing',
        },
        'transcriptions': {
            'exchange': 'transcriptions',
            'routing_key': 'transcriptions',
        },
        'maintenance': {
            'exchange': 'maintenance',
            'routing_key': 'maintenance',
        },
    },

    task_default_priority=5,
    task_ignore_result=False,
)

# Set task-specific limits
app.conf.task_annotations = {
    'transcriptions.tasks.process_transcription_job': {
        'rate_limit': '60/m',
        'time_limit': 1800,  # sync transcriptions poll the provider
        'soft_time_limit': 1500,
    },
}

# Celery Beat schedule configuration
app.conf.beat_schedule = {
    "sweep_stuck_transcription_jobs_15min": {
        "task": "transcriptions.tasks.sweep_stuck_transcription_jobs",
        "schedule": crontab(minute="*/15"),
        "options": {"queue": "maintenance"},
    },
    "cleanup_webhook_logs_daily": {
        "task": "billing.tasks.cleanup_webhook_event_logs",
        "schedule": crontab(hour=4, minute=0),
        "options": {"queue": "billing"},
    },
}


# System health check task
@app.task(bind=True)
def health_check(self):
    """System health check task"""
    from django.db import connection
    from django.db.utils import OperationalError

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
    except OperationalError as e:
        return {
            'status': 'unhealthy',
            'error': str(e),
            'timestamp': app.now(),
        }

    return {
        'status': 'healthy',
        'timestamp': app.now(),
        'worker_id': self.request.id,
    }
