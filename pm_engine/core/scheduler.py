"""
APScheduler setup for the periodic PM jobs.
Runs on the application's event loop, without a Redis dependency.

Jobs:
- escalation check: every ESCALATION_CHECK_INTERVAL_MINUTES
- PM automation tick: owned by PMAutomationService (start/stop at runtime)
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

ESCALATION_JOB_ID = "escalation_check"


def create_scheduler() -> AsyncIOScheduler:
    return AsyncIOScheduler(timezone="UTC")


def make_escalation_job(escalation_service):
    async def escalation_job():
        """Background job that checks and escalates work orders and PM compliance"""
        try:
            logger.info("🔄 Running automatic escalation check...")
            result = await escalation_service.check_and_escalate_all()

            if result.get("total_escalated", 0) or result.get("compliance_escalations", 0):
                logger.info(
                    f"✅ Escalation complete: {result['total_escalated']} work orders escalated, "
                    f"{result['compliance_escalations']} compliance escalations"
                )
            else:
                logger.info("ℹ️  No items needed escalation")

        except Exception as e:
            logger.error(f"❌ Escalation job failed: {str(e)}", exc_info=True)

    return escalation_job


def start_scheduler(services) -> None:
    """Register the periodic jobs and start the scheduler"""
    scheduler = services.job_scheduler
    settings = services.settings

    if settings.ENABLE_AUTO_ESCALATION:
        scheduler.add_job(
            make_escalation_job(services.escalation_service),
            trigger=IntervalTrigger(minutes=settings.ESCALATION_CHECK_INTERVAL_MINUTES),
            id=ESCALATION_JOB_ID,
            name="Automatic Escalation Check",
            replace_existing=True,
            max_instances=1,
            misfire_grace_time=10,
        )
        logger.info(f"   - Escalation check: every {settings.ESCALATION_CHECK_INTERVAL_MINUTES} minute(s)")

    if settings.ENABLE_PM_AUTOMATION:
        services.automation_service.start()

    if not scheduler.running:
        scheduler.start()
    logger.info("✅ Scheduler started successfully")


def stop_scheduler(services) -> None:
    """Stop the scheduler; running jobs are allowed to finish"""
    scheduler = services.job_scheduler
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("✅ Scheduler stopped")
