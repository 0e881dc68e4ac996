"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.core.logging import setup_logging
from app.core.tracing import setup_tracing, shutdown_tracing
from app.core.middleware import (
    CorrelationIdMiddleware,
    TracingMiddleware,
    RequestLoggingMiddleware,
)
from app.modules.subscription import router as subscription_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Flush pending spans on shutdown."""
    yield
    shutdown_tracing()


app = FastAPI(
    title=settings.PROJECT_NAME,
    lifespan=lifespan,
    version=settings.VERSION,
    description="""
## Subscription Tracker API

Track recurring bills, see what is due next and forecast monthly spend.

### Features

* **Subscriptions** - Daily, weekly, monthly, quarterly, yearly and one-time billing
* **Payments** - Mark the current bill as paid, record and review payment history
* **Dashboard** - Upcoming and overdue bills, per-currency monthly forecast
* **Reminders** - Daily scan for bills due in the configured number of days
    """,
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    openapi_tags=[
        {
            "name": "health",
            "description": "Health check endpoints",
        },
        {
            "name": "subscriptions",
            "description": "Subscriptions, payments, dashboard and forecast",
        },
    ],
)

# Set up logging with correlation IDs
setup_logging(
    level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL,
    json_format=settings.LOG_JSON,
    include_stack_trace=True,
)

# Set up distributed tracing
setup_tracing(
    service_name=settings.PROJECT_NAME,
    service_version=settings.VERSION,
    environment=settings.ENVIRONMENT,
    enable_console_export=settings.TRACING_CONSOLE_EXPORT,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(TracingMiddleware)
app.add_middleware(CorrelationIdMiddleware)


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint.

    Returns:
        dict: Health status with "healthy" or "unhealthy" value.
    """
    return {"status": "healthy"}


# Include routers
app.include_router(subscription_router, prefix=settings.API_V1_PREFIX)
