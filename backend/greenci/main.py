import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from greenci.config import VERSION, settings
from greenci.database import engine
from greenci.errors import GreenCIError
from greenci.middleware.logging_config import configure_logging

# Configure logging before the routers import their module loggers
configure_logging(settings.log_level, settings.log_format)

from greenci.api.agents import router as agents_router  # noqa: E402
from greenci.api.analysis import router as analysis_router  # noqa: E402
from greenci.api.auth import router as auth_router  # noqa: E402
from greenci.api.carbon import router as carbon_router  # noqa: E402
from greenci.api.health import router as health_router  # noqa: E402
from greenci.api.metrics import router as metrics_router  # noqa: E402
from greenci.api.optimizations import router as optimizations_router  # noqa: E402
from greenci.api.projects import router as projects_router  # noqa: E402
from greenci.api.prometheus import router as prometheus_router  # noqa: E402

logger = logging.getLogger("greenci")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: verify DB connection
    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
    logger.info("Green CI dashboard API started (%s)", settings.environment)
    yield
    # Shutdown
    await engine.dispose()


app = FastAPI(
    title="Green CI Dashboard API",
    description="Carbon footprint tracking and optimization for CI/CD pipelines",
    version=VERSION,
    lifespan=lifespan,
)

# ── CORS ─────────────────────────────────────────────────────────────────────
origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-API-Key", "X-Request-ID"],
)

# ── Security headers middleware ──────────────────────────────────────────────
from greenci.middleware.security_headers import SecurityHeadersMiddleware  # noqa: E402

app.add_middleware(SecurityHeadersMiddleware)

# ── Rate limiting middleware ─────────────────────────────────────────────────
from greenci.middleware.rate_limit import RateLimitMiddleware  # noqa: E402

if settings.rate_limit_enabled:
    app.add_middleware(RateLimitMiddleware)

# ── Request context middleware (request ID + timing) ─────────────────────────
from greenci.middleware.request_context import RequestContextMiddleware  # noqa: E402

app.add_middleware(RequestContextMiddleware)

# ── Prometheus metrics middleware ────────────────────────────────────────────
from greenci.middleware.metrics import PrometheusMiddleware  # noqa: E402

app.add_middleware(PrometheusMiddleware)


@app.exception_handler(GreenCIError)
async def greenci_exception_handler(request: Request, exc: GreenCIError):
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    else:
        logger.info("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    content = {"detail": exc.message}
    details = {k: v for k, v in exc.details.items() if v is not None}
    if details:
        content["details"] = details
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return detailed error info in development mode so 500s are debuggable."""
    tb = traceback.format_exc()
    logger.error(
        "Unhandled %s on %s %s: %s\n%s",
        type(exc).__name__, request.method, request.url.path, exc, tb,
    )
    detail = f"{type(exc).__name__}: {exc}"
    if settings.environment == "development":
        return JSONResponse(
            status_code=500,
            content={"detail": detail, "traceback": tb.splitlines()[-5:]},
        )
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


# Register API routers
app.include_router(health_router)
app.include_router(auth_router)
app.include_router(projects_router)
app.include_router(metrics_router)
app.include_router(optimizations_router)
app.include_router(agents_router)
app.include_router(carbon_router)
app.include_router(analysis_router)
app.include_router(prometheus_router)


@app.get("/")
async def index():
    return {
        "service": "green-ci-dashboard",
        "version": VERSION,
        "endpoints": {
            "health": "/api/health",
            "auth": "/api/auth/token",
            "projects": "/api/projects",
            "metrics": "/api/metrics",
            "optimizations": "/api/optimizations",
            "agents": "/api/agents",
            "carbon": "/api/carbon",
            "analysis": "/api/analysis/run",
            "prometheus": "/metrics",
        },
    }
