# pm_engine/core/config.py
import os
from typing import List
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings:
    # Store selection: "memory" keeps everything in process, "firestore" uses firebase-admin
    STORE_BACKEND: str = os.getenv("STORE_BACKEND", "memory").lower()

    FIREBASE_PROJECT_ID: str = os.getenv("FIREBASE_PROJECT_ID", "cmms-pm-engine")
    FIREBASE_SERVICE_ACCOUNT_PATH: str = os.getenv(
        "FIREBASE_SERVICE_ACCOUNT_PATH",
        "firebase-service-account.json",
    )

    # PM automation loop
    ENABLE_PM_AUTOMATION: bool = _env_bool("ENABLE_PM_AUTOMATION", "true")
    PM_AUTOMATION_INTERVAL_MINUTES: int = int(os.getenv("PM_AUTOMATION_INTERVAL_MINUTES", "60"))

    # Schedule generation, shared by every warehouse
    PM_LEAD_TIME_DAYS: int = int(os.getenv("PM_LEAD_TIME_DAYS", "2"))
    PM_MAX_CONCURRENT: int = int(os.getenv("PM_MAX_CONCURRENT", "10"))
    # ISO weekdays, Monday=1
    PM_WORKING_DAYS: List[int] = [int(d) for d in _env_list("PM_WORKING_DAYS", "1,2,3,4,5")]
    PM_WORKING_HOURS_START: str = os.getenv("PM_WORKING_HOURS_START", "08:00")
    PM_WORKING_HOURS_END: str = os.getenv("PM_WORKING_HOURS_END", "17:00")

    # Escalation
    ENABLE_AUTO_ESCALATION: bool = _env_bool("ENABLE_AUTO_ESCALATION", "true")
    ESCALATION_CHECK_INTERVAL_MINUTES: int = int(os.getenv("ESCALATION_CHECK_INTERVAL_MINUTES", "15"))
    MAX_ESCALATION_LEVEL: int = 3
    ESCALATION_NOTIFICATION_CHANNELS: List[str] = _env_list("ESCALATION_NOTIFICATION_CHANNELS", "email,sms")

    # Compliance targets (percent)
    COMPLIANCE_TARGET_PERCENT: float = float(os.getenv("COMPLIANCE_TARGET_PERCENT", "95"))
    CRITICAL_EQUIPMENT_TARGET_PERCENT: float = float(os.getenv("CRITICAL_EQUIPMENT_TARGET_PERCENT", "100"))
    MAX_OVERDUE_DAYS: int = int(os.getenv("MAX_OVERDUE_DAYS", "3"))

    # Celery broker for deployments that run the periodic jobs on workers
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")


settings = Settings()
