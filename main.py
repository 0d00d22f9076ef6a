"""
MailShield v1.0
FastAPI-based email threat detection service with optional LLM classification

Entry point: python main.py
"""

import logging
import os

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from mailshield.core.config import settings
from mailshield.api.routes import health, security
from mailshield.utils.startup import initialize_system

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Create FastAPI application
app = FastAPI(
    title="MailShield",
    description="Email threat detection: phishing, spoofing, malware and scam analysis",
    version=health.VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc"
)

# Add rate limiter to app state
app.state.limiter = security.limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS middleware - restrict origins in production
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:8000",
        "http://127.0.0.1:8000",
    ],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """Add security headers to all responses"""
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    if not settings.DEBUG:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


@app.on_event("startup")
async def startup_event():
    """Initialize system components on startup"""
    logger.info("=" * 70)
    logger.info(f"MailShield v{health.VERSION}")
    logger.info("=" * 70)

    await initialize_system(app)

    logger.info(f"System ready! Server running on {settings.SERVER_URL}")
    logger.info(f"API Docs: {settings.SERVER_URL}/api/docs")


# Include API routes
app.include_router(health.router, prefix="/api", tags=["Health"])
app.include_router(security.router, prefix="/api", tags=["Email Security"])


if __name__ == "__main__":
    # PORT env var overrides the configured port
    port = int(os.environ.get("PORT", settings.PORT))
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=port,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
