"""
Report query execution tasks
"""

import logging

from celery import shared_task
from sqlalchemy.exc import SQLAlchemyError

from report_compiler.core.config import get_settings
from report_compiler.execution.dao import QueryCacheDAO
from report_compiler.execution.service import QueryExecutionService
from report_compiler.schema_registry.registry import get_schema_registry
from task_queue.config.celery_app import app  # noqa: F401
from task_queue.config.db import task_sessions

logger = logging.getLogger(__name__)


@shared_task(name='task_queue.tasks.reports.execute_query_job')
def execute_query_job(job_id):
    """
    Run a queued analytics job to completion.

    Args:
        job_id: Id of the ReportAsyncJob row to execute

    Returns:
        dict: The job id and its final status
    """
    logger.info(f"Executing analytics job {job_id}")

    try:
        with task_sessions() as (config_db, dw_db):
            service = QueryExecutionService(config_db, dw_db, get_schema_registry(), get_settings())
            final_status = service.run_job(job_id)
    except SQLAlchemyError as e:
        logger.error(f"Database error during analytics job {job_id}: {str(e)}")
        raise
    except Exception as e:
        logger.exception(f"Unexpected error during analytics job {job_id}: {str(e)}")
        raise

    logger.info(f"Analytics job {job_id} finished as {final_status.value}")
    return {'job_id': job_id, 'status': final_status.value}


@shared_task(name='task_queue.tasks.reports.purge_expired_cache')
def purge_expired_cache():
    """
    Delete cached query results past their expiry
    """
    with task_sessions() as (config_db, _):
        removed = QueryCacheDAO(config_db).purge_expired()
    logger.info(f"Purged {removed} expired query cache entries")
    return {'removed': removed}
