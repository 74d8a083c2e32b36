"""
Pydantic models for pipeline data and request/response schemas
"""

from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List, Tuple
from enum import Enum


class ErrorCode(str, Enum):
    """Error code classifications: one per pipeline stage, plus SERVER_ERROR for the service"""
    INVALID_INPUT = "INVALID_INPUT"
    FETCH_FAILED = "FETCH_FAILED"
    EXTRACTION_FAILED = "EXTRACTION_FAILED"
    DECODE_FAILED = "DECODE_FAILED"
    SUBMISSION_REJECTED = "SUBMISSION_REJECTED"
    WRITE_FAILED = "WRITE_FAILED"
    SERVER_ERROR = "SERVER_ERROR"


class DestructuredURL(BaseModel):
    """Components of a parsed URL, used only for validation"""
    scheme: str
    hostname: str
    path: str
    query: str = ""
    fragment: str = ""


class Cookie(BaseModel):
    """A single name/value pair captured from a Set-Cookie header"""
    name: str
    value: str


class SynthesizedForm(BaseModel):
    """Download form recovered from the decoded token"""
    action_url: str
    fields: List[Tuple[str, str]] = Field(default_factory=list)


class DownloadTarget(BaseModel):
    """What the final response says it is delivering"""
    filename: str
    mime_type: str = "application/octet-stream"
    size_bytes: Optional[int] = Field(None, description="Content-Length, None when the server did not send one")


class DownloadResult(BaseModel):
    """Outcome of a successful pipeline run"""
    page_url: str
    kwik_url: str
    action_url: str
    status_code: int
    final_url: str
    target: DownloadTarget
    file_path: str
    bytes_written: int


class ErrorDetail(BaseModel):
    """Error details"""
    code: ErrorCode
    message: str
    stage: str = Field(..., description="Pipeline stage that reported the failure")
    details: Optional[Dict[str, Any]] = None


class DownloadRequest(BaseModel):
    """Request schema for /api/v1/download"""
    page_url: str = Field(..., description="pahe.win landing page URL")

    class Config:
        json_schema_extra = {
            "example": {
                "page_url": "https://pahe.win/QnSgV",
            }
        }


class DownloadResponse(BaseModel):
    """Success response for /api/v1/download"""
    success: bool = True
    download_url: str = Field(..., description="Path serving the downloaded file")
    result: DownloadResult


class ErrorResponse(BaseModel):
    """Error response for failed downloads"""
    success: bool = False
    error: ErrorDetail


class HealthStats(BaseModel):
    """Statistics for health check"""
    total_downloads: int
    active_downloads: int
    failed_downloads: int
    disk_usage_percent: float


class HealthResponse(BaseModel):
    """Response schema for /api/v1/health"""
    status: str
    version: str
    uptime_seconds: float
    stats: HealthStats
