# pikotunnel/schemas/base.py
"""
Base schemas for API responses
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime


class ErrorResponse(BaseModel):
    """
    Standard error response
    Used for 4xx and 5xx responses
    """
    success: bool = False
    error: str
    error_code: str
    details: Optional[dict] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "success": False,
                "error": "Peer 3f1c... not found",
                "error_code": "VALIDATION_ERROR",
                "details": None,
                "timestamp": "2026-01-01T10:00:00Z"
            }
        }
    )


class HealthResponse(BaseModel):
    """Health check response"""
    status: str = "healthy"
    service: str = "relay"
    version: str = "1.0.0"
    uptime_seconds: Optional[float] = None
    database: str = "connected"
    worker: str = "running"
    queued_jobs: int = 0
    interface: str = "up"
    tunnel_peers: Optional[int] = None
    records: Optional[dict] = None
    ip_allocation: Optional[dict] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
