"""FastAPI main application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from rbac_engine.core.config import settings
from rbac_engine.core.exceptions import RBACError, AuthenticationError
from rbac_engine.core.middleware import setup_middleware

from rbac_engine.api.rbac import router as rbac_router
from rbac_engine.api.admin import router as admin_router

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("rbac_engine")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("Starting %s (cache backend: %s)", settings.APP_NAME, settings.PERMISSION_CACHE_BACKEND)
    yield
    logger.info("Shutting down %s", settings.APP_NAME)


app = FastAPI(
    title="RBAC Engine API",
    description="Role-based authorization: rule catalog, permission checks and audit trail",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Middleware
setup_middleware(app)


# Exception handler for engine errors
@app.exception_handler(RBACError)
async def rbac_exception_handler(request: Request, exc: RBACError):
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationError) else None
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=headers,
    )

# Register routers
app.include_router(rbac_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.get("/")
async def root():
    return {
        "name": settings.APP_NAME,
        "version": "0.1.0",
        "docs": "/docs",
    }


@app.get("/api/health")
async def health():
    """Quick health check endpoint."""
    return {"status": "ok"}
