"""RQ worker configuration and setup for ConsentBit.

This module configures RQ workers with consistent logging and error handling. Workers run
the provisioning cycle, the refund sweep and the payment-record writes enqueued by the
web app or the scheduler.
"""

import logging

import redis
from rq import Worker

from .logging import configure_logging

logger = logging.getLogger(__name__)


def setup_worker(redis_url, queues=None):
    """Set up an RQ worker with proper logging and configuration.

    Parameters
    ----------
    redis_url : str
        Redis connection URL
    queues : list[str], optional
        List of queue names to listen to, by default ['default']

    Returns
    -------
    Worker
        Configured RQ worker
    """
    if queues is None:
        queues = ["default"]

    configure_logging()
    logger.debug("Setting up RQ worker for queues: %s", queues)

    redis_conn = redis.from_url(redis_url)
    logger.debug("Connected to Redis at %s", redis_url)

    worker = Worker(queues, connection=redis_conn)
    logger.debug("Worker initialized and ready to process jobs")
    return worker


def run_worker(redis_url, queues=None, with_scheduler=True):
    """Run an RQ worker with proper logging and configuration.

    This is the main entry point for running a worker process.

    Parameters
    ----------
    redis_url : str
        Redis connection URL
    queues : list[str], optional
        List of queue names to listen to, by default ['default']
    with_scheduler : bool, optional
        Whether the worker also runs RQ's scheduler for delayed jobs, by default True
    """
    worker = setup_worker(redis_url, queues)

    logger.debug("Starting worker process")
    worker.work(with_scheduler=with_scheduler)
