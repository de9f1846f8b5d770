"""
Celery application that runs queued analytics jobs off the API process
"""

from celery import Celery

from task_queue.config.celeryconfig import REPORTS_QUEUE

TASK_MODULES = ['task_queue.tasks.reports']


def make_celery_app(name='report_compiler_tasks', config_module='task_queue.config.celeryconfig'):
    """Build the worker app with report tasks registered and routed to the reports queue."""
    celery = Celery(name, include=TASK_MODULES)
    celery.config_from_object(config_module)
    celery.conf.task_default_queue = REPORTS_QUEUE
    return celery


app = make_celery_app()

if __name__ == '__main__':
    app.start()
