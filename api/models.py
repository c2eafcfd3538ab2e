"""
Pydantic models for API requests and responses
"""
from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any, Literal
from datetime import datetime


# ============================================================================
# REQUEST MODELS
# ============================================================================

class DiscoveryRequest(BaseModel):
    """Request model for blog discovery"""
    urls: List[str] = Field(..., min_length=1, description="Site root URLs to inspect")
    patterns: Optional[List[str]] = Field(None, description="Path patterns (default: /blog, /posts)")
    root_only: bool = Field(True, description="Exact path match instead of substring")
    homepage_scan: Literal["fallback", "always"] = Field("fallback", description="When to render the homepage")

    class Config:
        json_schema_extra = {
            "example": {
                "urls": ["https://www.example.com", "news.example.org"],
                "patterns": ["/blog", "/posts"],
                "root_only": True,
                "homepage_scan": "fallback",
            }
        }


# ============================================================================
# RESPONSE MODELS
# ============================================================================

class DiscoveryResponse(BaseModel):
    """Response model for blog discovery"""
    job_id: str
    message: str
    status: Literal["running", "completed", "failed"]
    result: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class JobStatus(BaseModel):
    """Job status model"""
    job_id: str
    type: Literal["discover"] = "discover"
    status: Literal["pending", "running", "completed", "failed"]
    progress: int = Field(0, ge=0, le=100, description="Progress percentage")
    created_at: datetime
    completed_at: Optional[datetime] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
