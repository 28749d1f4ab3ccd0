#!/usr/bin/env python
"""
Periodic sweep that expires review-ready drafts nobody committed or rejected.

Runs once with ``--once`` (for cron), otherwise loops on the configured interval.
"""
import argparse
import logging
import time

from sqlalchemy.exc import SQLAlchemyError

from recipe_ingest.app.core.config import get_settings
from recipe_ingest.app.db.session import SessionLocal
from recipe_ingest.app.services import task_service

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("cleanup")


def run_cleanup() -> int:
    settings = get_settings()
    with SessionLocal() as db:
        try:
            expired = task_service.expire_stale_drafts(db, expiration_days=settings.ingest_draft_expiration_days)
        except SQLAlchemyError:
            logger.exception("Draft expiration sweep failed")
            db.rollback()
            return 0
    if expired:
        logger.info("Marked %s drafts as EXPIRED", expired)
    return expired


def main():
    parser = argparse.ArgumentParser(description="Expire stale recipe ingest drafts")
    parser.add_argument("--once", action="store_true", help="run a single sweep and exit")
    args = parser.parse_args()

    interval = get_settings().ingest_expiration_check_interval_minutes * 60
    while True:
        run_cleanup()
        if args.once:
            break
        time.sleep(interval)


if __name__ == "__main__":
    main()
