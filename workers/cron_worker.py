"""
Cron worker: runs one scheduled job under its CronLock and exits.

Usage: python -m workers.cron_worker <job> [<job> ...]
A job whose lock is held elsewhere is skipped, not retried; the next
scheduler tick will try again.
"""
import asyncio
import sys
from typing import List

from seeding.core.config import settings
from seeding.core.exceptions import BaseAPIException
from seeding.core.logging import configure_structlog, get_structlog_logger
from seeding.db.session import create_database_engine, dispose_engine, get_sessionmaker
from seeding.services.cron_jobs import JOBS, run_job

configure_structlog()
logger = get_structlog_logger("workers.cron_worker")


async def worker_main(jobs: List[str]) -> int:
    logger.info("cron_worker.starting", jobs=jobs, environment=settings.environment)
    create_database_engine()
    exit_code = 0
    try:
        for job in jobs:
            try:
                result = await run_job(get_sessionmaker(), job)
            except BaseAPIException as e:
                logger.error("cron_worker.job_failed", job=job, code=e.code, message=e.message)
                exit_code = 1
                continue
            if result.get("skipped"):
                logger.info("cron_worker.job_skipped", job=job, reason=result.get("reason"))
    finally:
        await dispose_engine()
    logger.info("cron_worker.finished", exit_code=exit_code)
    return exit_code


def main(argv: List[str] = None) -> int:
    jobs = list(argv if argv is not None else sys.argv[1:])
    if not jobs:
        print(f"usage: python -m workers.cron_worker <job> ... (jobs: {', '.join(sorted(JOBS))})")
        return 2
    return asyncio.run(worker_main(jobs))


if __name__ == "__main__":
    sys.exit(main())
