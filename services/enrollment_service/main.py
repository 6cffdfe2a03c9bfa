"""Enrollment Service Composition Root"""
import asyncio

import structlog
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine

from services.enrollment_service.enrollment_service import EnrollmentService
from services.enrollment_service.memory_store import InMemoryEnrollmentStore
from services.enrollment_service.sql_store import SqlAlchemyEnrollmentStore
from services.enrollment_service.store import EnrollmentStore
from shared.config import settings
from shared.database.postgres import close_db
from shared.domain.audit import AuditSink
from shared.domain.policies import RequirementContextProvider
from shared.logging_config import configure_logging

logger = structlog.get_logger(__name__)


async def connect_store(
    engine: AsyncEngine | None = None, attempts: int = 5
) -> SqlAlchemyEnrollmentStore:
    """Create the SQL store and its schema, retrying the connection with backoff."""
    store = SqlAlchemyEnrollmentStore(engine=engine)

    for attempt in range(attempts):
        try:
            await store.create_schema()
            logger.info("Enrollment store ready")
            return store
        except (OperationalError, OSError) as e:
            if attempt + 1 >= attempts:
                logger.error("Failed to connect to database", attempts=attempts, error=str(e))
                raise
            wait_time = 2 ** attempt  # Exponential backoff: 1, 2, 4, 8 seconds
            logger.warning(
                "Database connection failed, retrying",
                attempt=attempt + 1,
                max_attempts=attempts,
                wait_seconds=wait_time,
                error=str(e),
            )
            await asyncio.sleep(wait_time)

    return store


async def create_enrollment_service(
    store: EnrollmentStore | None = None,
    audit_sink: AuditSink | None = None,
    context_provider: RequirementContextProvider | None = None,
) -> EnrollmentService:
    """
    Configure logging and build an EnrollmentService.

    Without an explicit store, the test environment gets an in-memory store
    and every other environment the PostgreSQL store.
    """
    configure_logging()

    if store is None:
        if settings.environment == "test":
            store = InMemoryEnrollmentStore()
        else:
            store = await connect_store()

    logger.info(
        "Enrollment service starting",
        environment=settings.environment,
        store=type(store).__name__,
    )
    return EnrollmentService(
        store=store,
        audit_sink=audit_sink,
        context_provider=context_provider,
    )


async def shutdown_enrollment_service(service: EnrollmentService) -> None:
    """Release the service's database connections."""
    if isinstance(service.store, SqlAlchemyEnrollmentStore):
        await service.store.close()
    await close_db()
    logger.info("Enrollment service stopped", store=type(service.store).__name__)
