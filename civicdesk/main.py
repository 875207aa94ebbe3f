"""
Civic Desk - Municipal Problem Reporting

Main application entry point.

Citizens report problems with photos and videos; municipality agents
triage them through pending, watched, observed and resolved.
"""

import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .core import AccountService, ReportService
from .observability import (
    setup_logging,
    get_logger,
    RequestContextMiddleware,
    check_health,
    get_metrics,
)
from .web.auth import expire_session_cookies, session_was_cleared

# Setup logging at import time
setup_logging()
logger = get_logger(__name__)

DEFAULT_CORS_ORIGINS = [
    "http://localhost:5173",  # Vite dev server
    "http://127.0.0.1:5173",
    "http://localhost:3000",  # Alternative dev port
    "http://127.0.0.1:3000",
    "http://localhost:8080",
]


def _cors_origins() -> list[str]:
    configured = os.getenv("CIVICDESK_CORS_ORIGINS", "")
    if configured.strip():
        return [o.strip() for o in configured.split(",") if o.strip()]
    return DEFAULT_CORS_ORIGINS


DESCRIPTION = """
## Civic Desk

Public problem reporting for the municipality.

### Report Lifecycle

```
Pending -> Watched -> Under Observation -> Resolved
```

Agents may move a report to any status, including back to pending.

### Roles

- **Citizen**: report problems, comment
- **Agent**: also change status and view the dashboard

### Storage Backends

- **In-memory**: Development/testing (default, seeded with demo data)
- **PostgreSQL**: Set `DATABASE_URL` or `DATABASE_HOST`
"""


def create_app(
    reports: Optional[ReportService] = None,
    accounts: Optional[AccountService] = None,
    seed: Optional[bool] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        reports, accounts: Services to serve. If None, the shared
            process-wide services from configuration.
        seed: Force demo seeding on (True) or off (False). None follows
            ENABLE_DEMO_SEED.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events."""
        from .web.shared_state import get_services, seed_demo_data

        if reports is None or accounts is None:
            shared_reports, shared_accounts = get_services()
        app.state.reports = reports if reports is not None else shared_reports
        app.state.accounts = accounts if accounts is not None else shared_accounts

        if seed is None:
            seed_demo_data(app.state.reports, app.state.accounts)
        elif seed:
            seed_demo_data(app.state.reports, app.state.accounts, force=True)

        logger.info(
            "Application startup complete",
            report_count=app.state.reports.report_count,
            identity_count=app.state.accounts.identity_count,
            store_type=type(app.state.reports.store).__name__,
        )

        yield

        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Civic Desk",
        description=DESCRIPTION,
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Add request context middleware for logging
    app.add_middleware(RequestContextMiddleware)

    # CORS for the React frontend; restrict with CIVICDESK_CORS_ORIGINS in production
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,  # Required for cookies
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from .api.routes_public import router as public_router
    from .api.routes_account import router as account_router
    from .api.routes_reports import router as reports_router, agent_router
    app.include_router(public_router)
    app.include_router(account_router)
    app.include_router(reports_router)
    app.include_router(agent_router)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        """Error responses still expire a session cookie discarded during the request."""
        response = await http_exception_handler(request, exc)
        if session_was_cleared(request):
            expire_session_cookies(response)
        return response

    @app.get("/health", tags=["System"])
    async def health():
        """
        Basic health check endpoint.

        Returns 200 if the service is running.
        For detailed health, use /health/detailed
        """
        return {"status": "healthy", "service": "civicdesk"}

    @app.get("/health/detailed", tags=["System"])
    def health_detailed(request: Request):
        """
        Detailed health check.

        Checks:
        - Service liveness
        - Report store connectivity
        - Identity store connectivity

        Returns 200 if healthy, 503 if unhealthy.
        """
        health_status = check_health(
            report_store=request.app.state.reports.store,
            identity_store=request.app.state.accounts.store,
        )
        return JSONResponse(
            status_code=200 if health_status.healthy else 503,
            content={
                "status": "healthy" if health_status.healthy else "unhealthy",
                "checks": health_status.checks,
                "duration_ms": health_status.duration_ms,
            },
        )

    @app.get("/metrics", tags=["System"])
    async def metrics():
        """
        Get application metrics.

        Returns counters and latency percentiles.
        """
        return get_metrics().get_summary()

    @app.get("/api", tags=["System"])
    def api_info(request: Request):
        """
        API info for the React frontend.
        """
        return {
            "name": "Civic Desk API",
            "version": __version__,
            "storage_backend": type(request.app.state.reports.store).__name__,
            "report_count": request.app.state.reports.report_count,
            "endpoints": {
                "public": {
                    "reports": "/api/public/reports",
                    "report_detail": "/api/public/reports/{id}",
                },
                "account": {
                    "register": "/api/account/register",
                    "login": "/api/account/login",
                    "logout": "/api/account/logout",
                    "me": "/api/account/me",
                    "profile": "/api/account/profile",
                    "password": "/api/account/password",
                    "password_reset": "/api/account/password-reset",
                    "password_reset_confirm": "/api/account/password-reset/confirm",
                    "delete": "/api/account",
                },
                "reports": {
                    "create": "/api/reports",
                    "comment": "/api/reports/{id}/comments",
                    "status": "/api/reports/{id}/status",
                },
                "agent": {
                    "dashboard": "/api/agent/dashboard",
                },
            },
        }

    return app


app = create_app()
