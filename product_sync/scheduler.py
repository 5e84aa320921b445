from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger

from .config import Settings
from .etl import ImportOrchestrator

IMPORT_JOB_ID = "product_import"


async def scheduled_import(orchestrator: ImportOrchestrator) -> None:
    """Job entry point; errors are logged so the scheduler keeps running."""
    try:
        await orchestrator.run(trigger="schedule")
    except Exception as e:
        logger.exception(f"Scheduled product import crashed: {e}")


def create_scheduler(orchestrator: ImportOrchestrator, settings: Settings) -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler(
        timezone=settings.scheduler_timezone,
        job_defaults={"misfire_grace_time": 3600},
    )
    scheduler.add_job(
        scheduled_import,
        trigger=CronTrigger.from_crontab(settings.import_cron, timezone=settings.scheduler_timezone),
        args=[orchestrator],
        id=IMPORT_JOB_ID,
        name="Product Import",
        coalesce=True,  # Combine missed runs into one
        max_instances=1,
        replace_existing=True,
    )
    logger.info(f"Scheduled product import with cron '{settings.import_cron}'")
    return scheduler
