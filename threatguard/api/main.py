"""
ThreatGuard Security Core - Main API
Threat detection, access decisions and audit trail for multi-tenant apps
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import structlog

from threatguard.api.routes import audit, security, threats
from threatguard.core import SecurityCore
from threatguard.utils.config import settings
from threatguard.utils.errors import (
    ForbiddenActionError,
    PatternNotFoundError,
    RateLimitExceededError
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    logger.info("starting_threatguard", environment=settings.ENVIRONMENT)
    core = SecurityCore()
    await core.start()
    app.state.core = core
    yield
    logger.info("shutting_down_threatguard")
    await core.stop()


app = FastAPI(
    title=settings.APP_NAME,
    description="Threat detection, access decisions and tamper-evident audit trail",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ForbiddenActionError)
async def forbidden_action_handler(request: Request, exc: ForbiddenActionError):
    headers = {}
    status_code = 403
    if isinstance(exc, RateLimitExceededError):
        status_code = 429
        headers["Retry-After"] = str(exc.retry_after)

    logger.warning(
        "request_forbidden",
        path=request.url.path,
        reason=exc.reason,
        risk_score=exc.risk_score
    )
    return JSONResponse(status_code=status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(PatternNotFoundError)
async def pattern_not_found_handler(request: Request, exc: PatternNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


# Include routers
app.include_router(audit.router, prefix="/audit", tags=["Audit"])
app.include_router(threats.router, prefix="/threats", tags=["Threat Detection"])
app.include_router(security.router, prefix="/security", tags=["Security Decisions"])


@app.get("/")
async def root():
    return {
        "service": settings.APP_NAME,
        "version": "1.0.0",
        "status": "operational"
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
