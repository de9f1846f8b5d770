#!/usr/bin/env python
"""
Worker process starter script for report compiler jobs
"""

import argparse
import logging

from task_queue.config.celery_app import REPORTS_QUEUE, app

logger = logging.getLogger(__name__)


def start_worker(queue=REPORTS_QUEUE, concurrency=None, loglevel='INFO', beat=False):
    """Start a Celery worker process"""
    logger.info(f"Starting worker for queue: {queue}")

    worker_args = [
        'worker',
        f'--queues={queue}',
        f'--loglevel={loglevel}',
        '--hostname=%h_%n',
    ]

    if concurrency:
        worker_args.append(f'--concurrency={concurrency}')
    if beat:
        worker_args.append('--beat')

    app.worker_main(argv=worker_args)


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Start report compiler task worker')

    parser.add_argument('--queue', type=str, default=REPORTS_QUEUE, help='Queue to process')
    parser.add_argument('--concurrency', type=int, help='Number of worker processes')
    parser.add_argument(
        '--loglevel',
        type=str,
        default='INFO',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='Log level',
    )
    parser.add_argument('--beat', action='store_true', help='Also run the periodic cache purge')

    args = parser.parse_args()
    logging.basicConfig(level=args.loglevel)

    start_worker(queue=args.queue, concurrency=args.concurrency, loglevel=args.loglevel, beat=args.beat)
