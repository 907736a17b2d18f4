from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, List

from pydantic import Field

from delayguard.config.settings import settings
from delayguard.schemas.camel_base_model import CamelCaseBaseModel as BaseModel
from delayguard.utils.datetime_utils import utc_now


class ResponseStatus(str, Enum):
    """Response status enumeration"""

    SUCCESS = "success"
    ERROR = "error"


class ApiResponse(BaseModel):
    """Standardized API response format"""

    success: bool = Field(..., description="Whether the request was successful")
    status: ResponseStatus = Field(..., description="Response status")
    message: str = Field(..., description="Human-readable message")
    data: Optional[Any] = Field(default=None, description="Response data")
    meta: Optional[Dict[str, Any]] = Field(
        default=None, description="Additional metadata"
    )
    errors: Optional[List[Dict[str, Any]]] = Field(
        default=None, description="Error details"
    )
    timestamp: datetime = Field(default_factory=utc_now, description="Response timestamp")
    request_id: Optional[str] = Field(
        default=None, description="X-Request-ID of the request being answered"
    )
    path: Optional[str] = Field(default=None, description="Request path")
    version: str = Field(default=settings.VERSION, description="API version")


class HealthData(BaseModel):
    status: str
    service: str = settings.NAME
    version: str = settings.VERSION
    timestamp: datetime = Field(default_factory=utc_now)
