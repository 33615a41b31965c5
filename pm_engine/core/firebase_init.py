import logging
import os
from typing import Optional

import firebase_admin
from firebase_admin import credentials

from .config import Settings

logger = logging.getLogger(__name__)


def initialize_firebase(settings: Optional[Settings] = None) -> bool:
    """
    Initialize the Firebase Admin SDK once per process.

    Used by the Firestore store and by token verification. Returns False
    when the service account file is missing or the SDK refuses it.
    """
    if firebase_admin._apps:
        return True

    if settings is None:
        from .config import settings

    service_account_path = settings.FIREBASE_SERVICE_ACCOUNT_PATH
    if not os.path.exists(service_account_path):
        logger.warning(f"⚠️ Firebase service account file not found at {service_account_path}")
        return False

    try:
        firebase_admin.initialize_app(
            credentials.Certificate(service_account_path),
            {"projectId": settings.FIREBASE_PROJECT_ID},
        )
    except (ValueError, OSError) as e:
        logger.error(f"❌ Firebase initialization failed: {e}")
        return False

    logger.info(f"✅ Firebase initialized for project {settings.FIREBASE_PROJECT_ID}")
    return True


def is_firebase_available() -> bool:
    return bool(firebase_admin._apps)


def get_firebase_status() -> dict:
    """Reported by /health; the in-memory store never initializes Firebase"""
    return {
        "available": is_firebase_available(),
        "apps_count": len(firebase_admin._apps),
    }
