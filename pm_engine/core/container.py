"""
Composition root for the engine services.

Everything is constructed once by build_services() and handed to whatever
hosts it: the FastAPI app keeps the container on app.state, Celery tasks
build their own.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .config import Settings, settings as default_settings
from .scheduler import create_scheduler
from ..database.database_service import (
    DatabaseService, FirestoreDatabaseService, InMemoryDatabaseService,
)
from ..database.storage_service import StorageService
from ..services.escalation_rule_store import EscalationRuleStore
from ..services.escalation_service import EscalationService
from ..services.notification_service import NotificationService
from ..services.pm_automation_service import PMAutomationService
from ..services.pm_compliance_service import PMComplianceService
from ..services.pm_scheduler_service import PMSchedulerService
from ..services.schedule_formatter import utc_now

logger = logging.getLogger(__name__)


class ServiceContainer:
    def __init__(
        self,
        settings: Settings,
        db: DatabaseService,
        storage: StorageService,
        job_scheduler: AsyncIOScheduler,
        notification_service: NotificationService,
        rule_store: EscalationRuleStore,
        compliance_service: PMComplianceService,
        scheduler_service: PMSchedulerService,
        automation_service: PMAutomationService,
        escalation_service: EscalationService,
    ):
        self.settings = settings
        self.db = db
        self.storage = storage
        self.job_scheduler = job_scheduler
        self.notification_service = notification_service
        self.rule_store = rule_store
        self.compliance_service = compliance_service
        self.scheduler_service = scheduler_service
        self.automation_service = automation_service
        self.escalation_service = escalation_service


def create_database(settings: Settings) -> DatabaseService:
    if settings.STORE_BACKEND == "firestore":
        logger.info("Using Firestore document store")
        return FirestoreDatabaseService(settings=settings)
    if settings.STORE_BACKEND != "memory":
        raise ValueError(f"Unknown STORE_BACKEND: {settings.STORE_BACKEND}")
    logger.info("Using in-memory document store")
    return InMemoryDatabaseService()


def build_services(
    settings: Optional[Settings] = None,
    db: Optional[DatabaseService] = None,
    clock: Callable[[], datetime] = utc_now,
    job_scheduler: Optional[AsyncIOScheduler] = None,
) -> ServiceContainer:
    settings = settings or default_settings
    db = db if db is not None else create_database(settings)
    job_scheduler = job_scheduler or create_scheduler()

    storage = StorageService(db, clock)
    notification_service = NotificationService(storage)
    rule_store = EscalationRuleStore(storage, settings)
    compliance_service = PMComplianceService(storage, clock, lead_time_days=settings.PM_LEAD_TIME_DAYS)
    scheduler_service = PMSchedulerService(storage, compliance_service, rule_store, settings, clock)
    automation_service = PMAutomationService(storage, scheduler_service, job_scheduler, settings, clock)
    escalation_service = EscalationService(
        storage, notification_service, rule_store, compliance_service, settings, clock
    )

    return ServiceContainer(
        settings=settings,
        db=db,
        storage=storage,
        job_scheduler=job_scheduler,
        notification_service=notification_service,
        rule_store=rule_store,
        compliance_service=compliance_service,
        scheduler_service=scheduler_service,
        automation_service=automation_service,
        escalation_service=escalation_service,
    )
