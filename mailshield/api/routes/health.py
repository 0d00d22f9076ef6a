"""
Health check endpoint
Provides system status information
"""

from typing import Optional
from fastapi import APIRouter, Request
from pydantic import BaseModel
from datetime import datetime
import time

from mailshield.services.llm_service import check_llm_status
from mailshield.utils.startup import get_init_status

router = APIRouter()

# Track startup time
_startup_time = time.time()

VERSION = "1.0.0"


class HealthResponse(BaseModel):
    """Health check response model"""
    status: str
    version: str
    uptime_seconds: float
    timestamp: str


class StatusResponse(BaseModel):
    """System status response model"""
    engine_ready: bool
    rule_count: int
    llm_enabled: bool
    llm_available: bool
    llm_provider: Optional[str]
    error: Optional[str]


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Health check endpoint

    Returns:
        HealthResponse: System health status
    """
    uptime = time.time() - _startup_time

    return HealthResponse(
        status="healthy",
        version=VERSION,
        uptime_seconds=round(uptime, 2),
        timestamp=datetime.utcnow().isoformat()
    )


@router.get("/status", response_model=StatusResponse)
async def system_status(request: Request):
    """
    System status endpoint - engine readiness and LLM availability

    Returns:
        StatusResponse: engine, rule store and LLM status
    """
    status = get_init_status(request.app)
    llm = await check_llm_status(getattr(request.app.state, "llm_classifier", None))

    return StatusResponse(
        engine_ready=status["initialized"],
        rule_count=status["rule_count"],
        llm_enabled=llm["enabled"],
        llm_available=llm["available"],
        llm_provider=llm["provider"],
        error=status["error"]
    )
