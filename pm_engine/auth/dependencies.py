import logging

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .firebase_auth import firebase_auth

security = HTTPBearer()
logger = logging.getLogger(__name__)

# Roles allowed to drive automation and escalate by hand
OPERATOR_ROLES = ["supervisor", "manager", "admin"]


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)):
    """
    Verify Firebase authentication token and return user data.
    Raises 401 if token is invalid.
    """
    try:
        user_data = await firebase_auth.verify_token(credentials.credentials)

        if not user_data:
            logger.warning("[Auth] Token verification failed - invalid token")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid authentication credentials",
                headers={"WWW-Authenticate": "Bearer"},
            )

        logger.debug(f"[Auth] Authenticated user: {user_data.get('email')} with role: {user_data.get('role')}")
        return user_data
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"[Auth] ❌ Authentication error: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Authentication failed: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )


def require_role(required_roles: list):
    def role_checker(current_user: dict = Depends(get_current_user)):
        user_role = current_user.get("role")

        if user_role not in required_roles:
            logger.warning(f"[Auth] Role check failed: user role '{user_role}' not in required roles {required_roles}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient permissions. Required role: {required_roles}, current role: {user_role}"
            )
        return current_user
    return role_checker


async def get_warehouse_id(x_warehouse_id: str = Header(..., alias="X-Warehouse-Id")) -> str:
    warehouse_id = x_warehouse_id.strip()
    if not warehouse_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="X-Warehouse-Id header is required")
    return warehouse_id
