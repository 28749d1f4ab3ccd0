#!/usr/bin/env python
"""
RQ worker for processing recipe ingest tasks from Redis.

Run with:
    rq worker --url redis://localhost:6379 recipe_ingest.tasks

Or use this script which sets up the worker with restart handling:
    python scripts/run_rq_worker.py
"""
import logging
import signal
import sys
import time

from rq import Worker

from recipe_ingest.app.core.config import get_settings
from recipe_ingest.app.services.queue_service import QUEUE_INGEST, get_queue, get_redis_connection

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("rq_worker")

QUEUE_NAMES = [QUEUE_INGEST]
MAX_RESTARTS = 10
RESTART_DELAY_SECONDS = 5


def setup_cleanup():
    """Exit cleanly on SIGINT/SIGTERM."""
    def signal_handler(sig, frame):
        logger.info("Received signal %s, shutting down gracefully", sig)
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


def main():
    settings = get_settings()
    logger.info("Starting RQ worker for queues: %s", ", ".join(QUEUE_NAMES))
    logger.info("Redis connection: %s:%s", settings.redis_host, settings.redis_port)

    restart_count = 0
    while restart_count < MAX_RESTARTS:
        try:
            redis_conn = get_redis_connection()
            queues = [get_queue(name) for name in QUEUE_NAMES]
            worker = Worker(queues, connection=redis_conn)
            logger.info("Worker started")
            worker.work(with_scheduler=True)
            logger.info("Worker stopped normally")
            break
        except KeyboardInterrupt:
            logger.info("Worker interrupted by user")
            break
        except Exception as exc:
            restart_count += 1
            logger.exception("Worker crashed (restart %d/%d): %s", restart_count, MAX_RESTARTS, exc)
            if restart_count >= MAX_RESTARTS:
                logger.error("Worker exceeded max restarts (%d), exiting", MAX_RESTARTS)
                raise
            time.sleep(RESTART_DELAY_SECONDS)
            logger.info("Restarting worker...")


if __name__ == "__main__":
    setup_cleanup()
    main()
