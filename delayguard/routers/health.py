from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from delayguard.db.session import get_sync_session, ping
from delayguard.schemas.response_schemas import HealthData
from delayguard.utils.errors import DatabaseError
from delayguard.utils.responses import ResponseBuilder

health_router = APIRouter()


@health_router.get("")
async def health_check(request: Request):
    """
    Basic health check endpoint

    Returns application status and basic system information
    """
    return ResponseBuilder.success(
        request=request,
        data=HealthData(status="ok").model_dump(by_alias=True),
        message="Service is running",
    )


@health_router.get("/ready")
def readiness_check(request: Request, db: Session = Depends(get_sync_session)):
    """Readiness probe; fails with 503 while the database cannot be reached."""
    try:
        ping(db)
    except SQLAlchemyError as e:
        raise DatabaseError(f"Database is unreachable: {str(e)}") from e

    return ResponseBuilder.success(
        request=request,
        data=HealthData(status="ready").model_dump(by_alias=True),
        message="Service is ready",
    )
