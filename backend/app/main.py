"""Workflow Execution Engine - process wiring.

``lifespan`` is the startup/shutdown sequence for a process hosting the
engine: logging, database tables, SQL-backed repositories, built-in
templates, then the service. Everything is torn down in reverse on exit.

Unless ``side_effects`` is injected, webhook, integration and api_call
steps go out over HTTP through ``HttpxCaller``; the remaining channels
are simulated.

    async with lifespan(access_checker=checker) as service:
        execution = await service.start_execution(...)
"""

from contextlib import asynccontextmanager
from dataclasses import replace
from typing import AsyncIterator, Optional

import httpx
import structlog

from app.config import Settings, get_settings
from core.audit import AuditSink
from core.logging_config import setup_logging
from core.rbac import AccessChecker, PermissionSetAccessChecker
from db.database import close_db, create_db_engine, create_session_factory, init_db
from db.repository import SqlDefinitionRepository, SqlExecutionRepository
from integrations.http import HttpxCaller
from integrations.side_effects import SideEffects
from integrations.simulated import simulated_side_effects
from services.workflow_service import WorkflowService

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(
    access_checker: Optional[AccessChecker] = None,
    side_effects: Optional[SideEffects] = None,
    audit_sink: Optional[AuditSink] = None,
    settings: Optional[Settings] = None,
    install_templates: bool = True,
    http_client: Optional[httpx.AsyncClient] = None,
) -> AsyncIterator[WorkflowService]:
    """Start a WorkflowService backed by DATABASE_URL and stop it on exit.

    ``http_client`` is used for outbound HTTP when given (the caller closes
    it); otherwise one is opened here and closed on exit.
    """
    settings = settings or get_settings()
    setup_logging(settings)

    engine = create_db_engine(settings.DATABASE_URL)
    await init_db(engine)
    session_factory = create_session_factory(engine)
    logger.info("Database ready", url=engine.url.render_as_string(hide_password=True))

    owned_client = None
    if side_effects is None:
        if http_client is None:
            http_client = owned_client = httpx.AsyncClient(follow_redirects=True)
        http = HttpxCaller(client=http_client, timeout=settings.HTTP_TIMEOUT)
        side_effects = replace(simulated_side_effects(), webhooks=http, api=http)

    service = WorkflowService(
        access_checker or PermissionSetAccessChecker(),
        side_effects=side_effects,
        audit_sink=audit_sink,
        definition_repository=SqlDefinitionRepository(session_factory),
        execution_repository=SqlExecutionRepository(session_factory),
        settings=settings,
    )
    try:
        if install_templates:
            installed = await service.install_builtin_templates()
            logger.info("Built-in templates installed", count=len(installed))

        logger.info("Workflow engine ready", version=settings.APP_VERSION, environment=settings.ENVIRONMENT)
        yield service
    finally:
        await service.shutdown()
        if owned_client is not None:
            await owned_client.aclose()
        await close_db(engine)
        logger.info("Workflow engine stopped")
