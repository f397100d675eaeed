"""
Catalog Add-on Backend
FastAPI application entry point

- Upsell bundle administration and cart discount calculation
- Rate limiting with SlowAPI on the public discount endpoint
- Domain errors mapped to structured JSON responses
- Error sanitization middleware for everything else
- Health endpoint with DB ping
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from catalog_addon import __version__
from catalog_addon.api.routes import upsells, uploads
from catalog_addon.core.config import settings
from catalog_addon.core.database import get_db_session, init_models
from catalog_addon.core.error_handler import ErrorSanitizationMiddleware, register_exception_handlers
from catalog_addon.core.rate_limit import limiter, rate_limit_exceeded_handler

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup when configured (dev/test only)."""
    if settings.AUTO_CREATE_TABLES:
        await init_models()
        logger.info("Database tables created")

    logger.info(f"{settings.APP_NAME} started (environment={settings.ENVIRONMENT})")
    yield
    logger.info(f"{settings.APP_NAME} shutting down")


app = FastAPI(
    lifespan=lifespan,
    title=settings.APP_NAME,
    description="""
## Catalog Add-on API

Upsell bundles for the storefront catalog.

### Features
- **Upsells**: Link companion products to a main product, with an optional bundle discount
- **Cart discounts**: Work out which bundles a cart satisfies and what they take off
- **Uploads**: Store images in S3-compatible storage

### Authentication
Admin endpoints require a bearer token with the admin role.
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

# Domain errors -> 400/404/409
register_exception_handlers(app)

# Error sanitization (catches unhandled exceptions)
app.add_middleware(ErrorSanitizationMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(upsells.router, prefix="/api", tags=["Upsells"])
app.include_router(uploads.router, prefix="/api", tags=["Uploads"])


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check with an actual DB ping. Returns 503 if the database is unreachable."""
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    try:
        async with get_db_session() as db:
            await db.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except Exception as e:
        logger.error(f"Health check database ping failed: {type(e).__name__}")
        health_status["database"] = f"error: {type(e).__name__}"
        health_status["status"] = "unhealthy"
        return JSONResponse(status_code=503, content=health_status)

    return health_status
