from fastapi import HTTPException, Request
import logging

from ..core.container import ServiceContainer
from ..core.exceptions import (
    NoEligibleTargetError, NotFoundError, PMEngineError, StoreError, ValidationFailure,
)

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    NotFoundError: 404,
    ValidationFailure: 400,
    NoEligibleTargetError: 409,
    StoreError: 500,
}


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def to_http_exception(error: Exception, action: str) -> HTTPException:
    """Map an engine error to the HTTP error the caller sees"""
    if isinstance(error, HTTPException):
        return error

    for error_cls, status_code in ERROR_STATUS.items():
        if isinstance(error, error_cls):
            if status_code >= 500:
                logger.error(f"Error {action}: {error}")
                return HTTPException(status_code=status_code, detail="Storage error")
            return HTTPException(status_code=status_code, detail=str(error))

    if isinstance(error, PMEngineError):
        return HTTPException(status_code=400, detail=str(error))

    logger.error(f"Error {action}: {error}", exc_info=True)
    return HTTPException(status_code=500, detail="Internal server error")
