from contextlib import asynccontextmanager, contextmanager
import logging
from collections.abc import Iterator

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from sqlalchemy.orm import Session

from salesflow.api.routes import router as api_router
from salesflow.context import bound_context
from salesflow.core.config import get_settings
from salesflow.core.context import RequestContextMiddleware
from salesflow.core.database import get_db, session_factory
from salesflow.core.events import InternalEvent, event_bus
from salesflow.logging import configure_logging
from salesflow.middleware.correlation_id import CorrelationIdMiddleware
from salesflow.middleware.rate_limit import MutationRateLimitMiddleware
from salesflow.middleware.request_logging import RequestLoggingMiddleware
from salesflow.otel import get_fastapi_server_request_hook, setup_otel
from salesflow.workflows.service import WORKFLOW_TRIGGER_EVENTS, workflow_dispatcher


configure_logging()
logger = logging.getLogger("salesflow.lifecycle")


@contextmanager
def _dispatch_session() -> Iterator[Session]:
    """Session for event-driven dispatch, honouring a ``get_db`` override when one is installed."""
    override = app.dependency_overrides.get(get_db)
    if override is None:
        session = session_factory()()
        try:
            yield session
        finally:
            session.close()
        return

    provider = override()
    session = next(provider)
    try:
        yield session
    finally:
        next(provider, None)


def _dispatch_workflows(event: InternalEvent) -> None:
    envelope = event.payload
    with bound_context(envelope.get("correlation_id"), event.workspace_id):
        try:
            with _dispatch_session() as session:
                workflow_dispatcher.dispatch_for_event(session, envelope)
        except Exception as exc:
            logger.exception("workflow.dispatch_failed", extra={"event_name": event.name, "error": str(exc)})


def _log_startup(event: InternalEvent) -> None:
    logger.info("system.started", extra={"event_name": event.name})


@asynccontextmanager
async def lifespan(app: FastAPI):
    event_bus.subscribe("system.started", _log_startup)
    event_bus.subscribe_many(WORKFLOW_TRIGGER_EVENTS, _dispatch_workflows)
    event_bus.publish("system.started", {"service": "api"})
    yield


app = FastAPI(title="Salesflow API", version="0.1.0", lifespan=lifespan)
app.add_middleware(MutationRateLimitMiddleware)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)

if get_settings().otel_enabled:
    setup_otel("salesflow-api", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
