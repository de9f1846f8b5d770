"""
Database sessions for Celery tasks
"""

from contextlib import contextmanager

from report_compiler.core import database


@contextmanager
def task_sessions():
    """Config and warehouse sessions, closed when the task finishes."""
    config_db = database.SessionLocal()
    dw_db = database.DWSessionLocal()
    try:
        yield config_db, dw_db
    finally:
        dw_db.close()
        config_db.close()
