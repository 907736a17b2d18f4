from typing import Dict, Tuple, Type

from fastapi import FastAPI, Request, status
from starlette.exceptions import HTTPException as StarletteHTTPException
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError
import traceback
from .logging import get_logger
from .responses import ResponseBuilder

logger = get_logger()


class InvalidArgumentError(ValueError):
    """Raised when a caller passes an argument outside its valid domain."""

    def __init__(self, message: str, error_code: str = "INVALID_ARGUMENT"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class DatabaseError(Exception):
    """Custom exception for database-related errors."""

    def __init__(self, message: str, error_code: str = "DB_ERROR"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class StoreReadError(DatabaseError):
    """
    The shipment store could not be read.

    Fatal to a poll scheduling run: without a reliable picture of what is due
    the run stops and the next tick retries from scratch.
    """

    def __init__(self, message: str, error_code: str = "STORE_READ_ERROR"):
        super().__init__(message, error_code)


class QueueWriteError(Exception):
    """A bulk submission to the poll queue failed as a whole."""

    def __init__(self, message: str, error_code: str = "QUEUE_WRITE_ERROR"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class NotFoundError(Exception):
    """Custom exception for resource not found errors."""

    def __init__(
        self, message: str = "Resource not found", error_code: str = "NOT_FOUND"
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


# Domain exception -> (HTTP status, meta error_type)
DOMAIN_ERRORS: Dict[Type[Exception], Tuple[int, str]] = {
    DatabaseError: (status.HTTP_503_SERVICE_UNAVAILABLE, "DATABASE_ERROR"),
    QueueWriteError: (status.HTTP_503_SERVICE_UNAVAILABLE, "QUEUE_ERROR"),
    NotFoundError: (status.HTTP_404_NOT_FOUND, "NOT_FOUND_ERROR"),
    InvalidArgumentError: (status.HTTP_400_BAD_REQUEST, "INVALID_ARGUMENT_ERROR"),
}


def setup_error_handlers(app: FastAPI):
    """Setup custom error handlers."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        logger.error(f"HTTP Exception: {exc.status_code} - {exc.detail}")
        return ResponseBuilder.error(
            request=request,
            message=str(exc.detail),
            error_code="HTTP_ERROR",
            status_code=exc.status_code,
            meta={"http_status": exc.status_code},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        logger.error(f"Request Validation Error: {exc.errors()}")

        formatted_errors = [
            {
                "field": " -> ".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"],
            }
            for error in exc.errors()
        ]

        return ResponseBuilder.error(
            request=request,
            message="Request validation failed",
            errors=formatted_errors,
            error_code="VALIDATION_ERROR",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        )

    async def domain_exception_handler(request: Request, exc: Exception):
        # Most specific registered class wins, e.g. StoreReadError -> DatabaseError
        for error_class in type(exc).__mro__:
            if error_class in DOMAIN_ERRORS:
                status_code, error_type = DOMAIN_ERRORS[error_class]
                break

        logger.error(f"{type(exc).__name__}: {exc.message}")
        return ResponseBuilder.error(
            request=request,
            message=exc.message,
            error_code=exc.error_code,
            status_code=status_code,
            meta={"error_type": error_type},
        )

    for error_class in DOMAIN_ERRORS:
        app.add_exception_handler(error_class, domain_exception_handler)

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError):
        logger.error(f"SQLAlchemy Error: {str(exc)}")

        # Don't expose internal database errors to users
        return ResponseBuilder.error(
            request=request,
            message="A database error occurred",
            error_code="DATABASE_ERROR",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            meta={"error_type": "SQLALCHEMY_ERROR"},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle all other unhandled exceptions"""
        logger.error(f"Unhandled Exception: {str(exc)}")
        logger.error(f"Traceback: {traceback.format_exc()}")

        return ResponseBuilder.error(
            request=request,
            message="An internal server error occurred",
            error_code="INTERNAL_ERROR",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            meta={"error_type": "INTERNAL_ERROR"},
        )
