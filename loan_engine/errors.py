# loan_engine/errors.py
"""
Engine error taxonomy and FastAPI exception handlers.

Every rejected operation surfaces as ``{code, message, details?}``.
"""

from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from .engine_logging import get_logger

logger = get_logger(__name__)


class ErrorResponse(BaseModel):
    """Error response body"""
    code: str = Field(description="Error code")
    message: str = Field(description="Error message")
    details: Optional[Dict[str, Any]] = Field(default=None, description="Additional error details")


class EngineError(Exception):
    """Base class for engine errors"""
    code = "INTERNAL_ERROR"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(code=self.code, message=self.message, details=self.details)


class ValidationError(EngineError):
    """Missing or empty required field"""
    code = "VALIDATION_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST


class UnauthorizedError(EngineError):
    """No caller identity supplied"""
    code = "UNAUTHORIZED"
    status_code = status.HTTP_401_UNAUTHORIZED


class ForbiddenError(EngineError):
    """Membership, role or governance rule violation"""
    code = "FORBIDDEN"
    status_code = status.HTTP_403_FORBIDDEN


class PublishBlockedError(ForbiddenError):
    """Publish attempted while the golden record is IN_REVIEW"""

    def __init__(self, integrity_score: int, unresolved_high_drift_count: int):
        message = (
            f"Cannot publish while status is IN_REVIEW (integrity score {integrity_score}, "
            f"{unresolved_high_drift_count} unresolved HIGH drift item(s)). Resolve all HIGH "
            "severity drift and ensure integrity score is at least 90."
        )
        super().__init__(message, details={
            "integrityScore": integrity_score,
            "unresolvedHighDriftCount": unresolved_high_drift_count,
        })


class NotFoundError(EngineError):
    """Workspace, clause, variable, node or drift item absent"""
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(EngineError):
    """Target row changed state underneath the caller"""
    code = "CONFLICT"
    status_code = status.HTTP_409_CONFLICT


class InternalError(EngineError):
    """Unexpected store failure"""


def register_exception_handlers(app: FastAPI) -> None:
    """Map engine, validation, store and unhandled errors to structured JSON responses"""

    @app.exception_handler(EngineError)
    async def engine_error_handler(request: Request, exc: EngineError):
        if exc.status_code >= 500:
            logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
        else:
            logger.info(f"{exc.code} on {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_response().model_dump(exclude_none=True),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", "")}
            for err in exc.errors()
        ]
        body = ErrorResponse(code=ValidationError.code, message="Invalid request", details={"errors": errors})
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body.model_dump(exclude_none=True))

    @app.exception_handler(SQLAlchemyError)
    async def store_error_handler(request: Request, exc: SQLAlchemyError):
        logger.error(f"Store failure on {request.url.path}: {exc}")
        body = ErrorResponse(code=InternalError.code, message="Unexpected store failure")
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body.model_dump(exclude_none=True))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.url.path}: {exc}")
        body = ErrorResponse(code=InternalError.code, message="Internal server error")
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body.model_dump(exclude_none=True))
