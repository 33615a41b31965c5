import logging
from typing import Optional

from firebase_admin import auth

from ..core.firebase_init import initialize_firebase, is_firebase_available

logger = logging.getLogger(__name__)


class FirebaseAuth:
    """Verifies Firebase ID tokens; the Admin SDK is initialized on first use"""

    def _ensure_initialized(self) -> None:
        if not is_firebase_available() and not initialize_firebase():
            raise RuntimeError("Firebase initialization failed - Auth not available")

    async def verify_token(self, token: str) -> Optional[dict]:
        self._ensure_initialized()
        try:
            return auth.verify_id_token(token)
        except Exception as e:
            logger.warning(f"Token verification failed: {e}")
            return None


firebase_auth = FirebaseAuth()
