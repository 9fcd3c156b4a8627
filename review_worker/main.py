"""
Worker process entry point.

Loads configuration, wires the store, the completion client and the
dispatcher together, then runs the polling loop until SIGINT/SIGTERM.
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional, Sequence

from pydantic import ValidationError

from review_worker.core.config import Settings, get_settings
from review_worker.core.logging_config import configure_logging, mask_secret
from review_worker.errors import ConfigurationError
from review_worker.db.session import create_engine, create_session_maker
from review_worker.repositories.job_repository import JobRepository
from review_worker.services.completion_client import CompletionClient
from review_worker.services.job_dispatcher import JobDispatcher
from review_worker.workers.job_worker import JobWorker

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="review-worker",
        description="Process queued review reply and analysis jobs.",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Process at most one job, then exit",
    )
    parser.add_argument(
        "--poll-interval-ms",
        type=int,
        default=None,
        help="Override POLL_INTERVAL_MS",
    )
    return parser.parse_args(argv)


def _report_invalid_settings(exc: ValidationError) -> None:
    logging.basicConfig(level=logging.ERROR)
    logger.error("Invalid worker configuration:")
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ())) or "settings"
        logger.error("  %s: %s", field, err.get("msg"))


def resolve_poll_interval_ms(settings: Settings, override: Optional[int]) -> int:
    if override is None:
        return settings.POLL_INTERVAL_MS
    if override <= 0:
        raise ConfigurationError("--poll-interval-ms must be positive")
    return override


async def run_worker(settings: Settings, once: bool = False, poll_interval_ms: Optional[int] = None) -> None:
    poll_interval = (poll_interval_ms or settings.POLL_INTERVAL_MS) / 1000.0

    engine = create_engine(settings.database_url_with_credentials, echo=settings.DEBUG)
    repository = JobRepository(
        create_session_maker(engine),
        finalize_attempts=settings.MAX_RETRIES,
        finalize_backoff_seconds=settings.RETRY_BACKOFF_SECONDS,
    )

    try:
        async with CompletionClient(
            settings.OPENAI_API_KEY,
            settings.OPENAI_PROJECT_ID,
            base_url=settings.OPENAI_BASE_URL,
            timeout_seconds=settings.COMPLETION_TIMEOUT_SECONDS,
        ) as client:
            dispatcher = JobDispatcher(
                client,
                model=settings.COMPLETION_MODEL,
                temperature=settings.COMPLETION_TEMPERATURE,
            )
            worker = JobWorker(
                repository,
                dispatcher,
                worker_id=settings.WORKER_ID,
                poll_interval=poll_interval,
                lease_seconds=settings.PROCESSING_LEASE_SECONDS,
            )

            logger.info("=== Review Job Worker Starting ===")
            logger.info("Worker ID: %s", worker.worker_id)
            logger.info("Poll interval: %sms", int(poll_interval * 1000))
            logger.info("Max retries: %s", settings.MAX_RETRIES)
            logger.info("Job types: %s", ", ".join(dispatcher.supported_job_types))
            logger.info("Completion API key: %s", mask_secret(settings.OPENAI_API_KEY))
            logger.info("Completion API project: %s", settings.OPENAI_PROJECT_ID)

            if once:
                processed = await worker.run_once()
                if not processed:
                    logger.info("No jobs available")
                worker.log_stats()
            else:
                await worker.run()
    finally:
        await engine.dispose()


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)

    try:
        settings = get_settings()
    except ValidationError as exc:
        _report_invalid_settings(exc)
        return 1

    try:
        poll_interval_ms = resolve_poll_interval_ms(settings, args.poll_interval_ms)
    except ConfigurationError as exc:
        logging.basicConfig(level=logging.ERROR)
        logger.error("%s", exc)
        return 1

    configure_logging(settings.LOG_LEVEL, settings.LOG_FILE)

    try:
        asyncio.run(run_worker(settings, once=args.once, poll_interval_ms=poll_interval_ms))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    return 0


if __name__ == "__main__":
    sys.exit(main())
