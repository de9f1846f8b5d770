"""
Celery configuration settings
"""
import os

from report_compiler.core.config import celery_always_eager, get_settings

# Broker settings
broker_url = os.environ.get('CELERY_BROKER_URL', 'redis://localhost:6379/0')
result_backend = os.environ.get('CELERY_RESULT_BACKEND', 'redis://localhost:6379/0')

# Task serialization format
task_serializer = 'json'
accept_content = ['json']
result_serializer = 'json'
timezone = 'UTC'
enable_utc = True

# Run tasks inline for tests and local development
task_always_eager = celery_always_eager()
task_eager_propagates = True

# Worker settings
worker_concurrency = 4
worker_max_tasks_per_child = 100

# Task routing
REPORTS_QUEUE = 'reports'
task_routes = {
    'task_queue.tasks.reports.*': {'queue': REPORTS_QUEUE},
}

# Periodic cleanup of expired cached results
beat_schedule = {
    'purge-expired-query-cache': {
        'task': 'task_queue.tasks.reports.purge_expired_cache',
        'schedule': float(get_settings().cache_ttl_seconds),
        'args': (),
    },
}

# Task monitoring
task_send_sent_event = True
task_track_started = True
worker_send_task_events = True

# Task time limits
task_time_limit = 900  # Hard time limit in seconds
task_soft_time_limit = 840  # Soft time limit

# Task result settings
result_expires = 60 * 60 * 24  # Results expire in 1 day
