"""
Shared Service Instances

Holds the process-wide report and account services.
Supports both in-memory (development) and PostgreSQL (production) modes.

Mode is determined by environment variables:
- CIVICDESK_STORE_DRIVER: Explicit driver selection (memory, postgres)
- DATABASE_URL or DATABASE_HOST: Database connection (auto-selects postgres)
- Neither set: Use in-memory (default for development)

SEEDING:
- Seeding only happens when both stores are empty
- ENABLE_DEMO_SEED=1 turns it on, =0 turns it off
- Unset: on for the in-memory store, off for PostgreSQL
- For production, seed via `manage.py seed-demo` instead of app startup
"""

import os
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Optional, Tuple
from uuid import uuid4

from ..core import AccountService, ReportService
from ..db.config import DatabaseConfig, StoreDriver, get_database_config, get_store_driver
from ..db.store import (
    IdentityStore,
    InMemoryIdentityStore,
    InMemoryReportStore,
    ReportStore,
)
from ..observability import get_logger
from ..schemas import Comment, Media, MediaKind, Report, ReportStatus, Role


logger = get_logger(__name__)

DEMO_PASSWORD = "password"

# Seed lock to prevent races between concurrent startups in one process
_seed_lock = Lock()
_services_lock = Lock()
_services: Optional[Tuple[ReportService, AccountService]] = None


# ============================================================
# STORES
# ============================================================

def create_stores() -> Tuple[ReportStore, IdentityStore]:
    """
    Create the store pair selected by configuration.

    Returns:
        In-memory stores for development/testing
        PostgreSQL stores when a database is configured
    """
    driver = get_store_driver()

    if driver == StoreDriver.MEMORY:
        logger.info("Using in-memory stores (no persistence)")
        return InMemoryReportStore(), InMemoryIdentityStore()

    config = get_database_config()
    if config is None:
        logger.warning("Store driver is postgres but no database configured, using in-memory stores")
        return InMemoryReportStore(), InMemoryIdentityStore()

    return _create_postgres_stores(config)


def connection_factory_for(config: DatabaseConfig):
    """Callable opening a new psycopg2 connection for config."""
    import psycopg2

    def connection_factory():
        return psycopg2.connect(config.to_dsn())

    return connection_factory


def _create_postgres_stores(config: DatabaseConfig) -> Tuple[ReportStore, IdentityStore]:
    from ..db.postgres import PostgresIdentityStore, PostgresReportStore

    factory = connection_factory_for(config)

    # Fail at startup, not on the first request
    test_conn = factory()
    test_conn.close()

    logger.info(
        "PostgreSQL connection established",
        host=config.host,
        port=config.port,
        database=config.database,
    )
    return (
        PostgresReportStore(factory, statement_timeout_ms=config.statement_timeout_ms),
        PostgresIdentityStore(factory, statement_timeout_ms=config.statement_timeout_ms),
    )


def build_services() -> Tuple[ReportService, AccountService]:
    report_store, identity_store = create_stores()
    return ReportService(store=report_store), AccountService(store=identity_store)


def get_services() -> Tuple[ReportService, AccountService]:
    """The shared (reports, accounts) pair, created on first use."""
    global _services
    with _services_lock:
        if _services is None:
            _services = build_services()
        return _services


# ============================================================
# DEMO DATA
# ============================================================

def demo_seed_enabled(reports: ReportService) -> bool:
    flag = os.getenv("ENABLE_DEMO_SEED", "").lower()
    if flag:
        return flag in ("1", "true", "yes")
    return isinstance(reports.store, InMemoryReportStore)


def seed_demo_data(reports: ReportService, accounts: AccountService, force: bool = False) -> bool:
    """
    Seed the demo identities and sample reports.

    SAFETY RULES:
    - Only seeds if both stores are empty
    - Unless force=True, respects ENABLE_DEMO_SEED (see module docstring)

    Returns:
        True if data was seeded
    """
    if not force and not demo_seed_enabled(reports):
        logger.info("Demo seeding disabled (set ENABLE_DEMO_SEED=1 to enable)")
        return False

    with _seed_lock:
        if reports.report_count > 0 or accounts.identity_count > 0:
            logger.info(
                "Stores not empty, skipping demo seed",
                report_count=reports.report_count,
                identity_count=accounts.identity_count,
            )
            return False
        _do_seed_demo_data(reports, accounts)
    return True


def _do_seed_demo_data(reports: ReportService, accounts: AccountService) -> None:
    """Internal: actually perform the seeding."""
    citizen = accounts.create_identity(
        "user@example.com", DEMO_PASSWORD, "John Doe", role=Role.CITIZEN
    )
    agent = accounts.create_identity(
        "agent@bhimdatta.gov.np", DEMO_PASSWORD, "Agent Smith", role=Role.AGENT
    )

    now = datetime.now(timezone.utc)

    def days_ago(n: int) -> datetime:
        return now - timedelta(days=n)

    def agent_comment(text: str, at: datetime) -> Comment:
        return Comment(
            id=uuid4(),
            text=text,
            author_id=agent.id,
            author_name=agent.name,
            created_at=at,
        )

    samples = [
        Report(
            id=uuid4(),
            title="Broken Street Light",
            description="The street light at the corner of Main St and Park Ave has been broken for two weeks.",
            location="Main St & Park Ave, Bhimdatta",
            status=ReportStatus.PENDING,
            created_at=days_ago(7),
            updated_at=days_ago(7),
            author_id=citizen.id,
            author_name=citizen.name,
            media=[
                Media(
                    id=uuid4(),
                    kind=MediaKind.IMAGE,
                    url="https://images.unsplash.com/photo-1470071459604-3b5ec3a7fe05",
                ),
            ],
            comments=[],
        ),
        Report(
            id=uuid4(),
            title="Garbage Collection Issue",
            description="Garbage has not been collected from Residential Area 3 for the past week.",
            location="Residential Area 3, Bhimdatta",
            status=ReportStatus.WATCHED,
            created_at=days_ago(3),
            updated_at=days_ago(2),
            author_id=citizen.id,
            author_name=citizen.name,
            media=[
                Media(
                    id=uuid4(),
                    kind=MediaKind.IMAGE,
                    url="https://images.unsplash.com/photo-1621792907526-eb05770eeb62",
                ),
            ],
            comments=[
                agent_comment("We have noted this issue and dispatched a team.", days_ago(2)),
            ],
        ),
        Report(
            id=uuid4(),
            title="Pothole on Highway",
            description=(
                "There is a large pothole on the highway near the city entrance "
                "that is causing traffic and vehicle damage."
            ),
            location="Highway Entrance, Bhimdatta",
            status=ReportStatus.OBSERVED,
            created_at=days_ago(14),
            updated_at=days_ago(1),
            author_id=citizen.id,
            author_name=citizen.name,
            media=[
                Media(
                    id=uuid4(),
                    kind=MediaKind.IMAGE,
                    url="https://images.unsplash.com/photo-1515162816999-a0c47dc192f7",
                ),
                Media(
                    id=uuid4(),
                    kind=MediaKind.VIDEO,
                    url="https://example.com/video1.mp4",
                ),
            ],
            comments=[
                agent_comment("This has been reported to the Highway Department.", days_ago(10)),
                agent_comment("Repair team has been scheduled for next week.", days_ago(1)),
            ],
        ),
    ]

    for report in samples:
        reports.import_report(report)

    logger.info(
        "Seeded demo data",
        identity_count=accounts.identity_count,
        report_count=reports.report_count,
    )
