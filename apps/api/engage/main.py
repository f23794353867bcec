from contextlib import asynccontextmanager, contextmanager
import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from engage.api.deps import error_response, status_for_error
from engage.api.routes import router as api_router
from engage.core.config import get_settings
from engage.core.context import RequestContextMiddleware
from engage.core.database import SessionLocal, get_db
from engage.core.events import InternalEvent, event_bus
from engage.errors import EngageError
from engage.logging import configure_logging
from engage.middleware.correlation_id import CorrelationIdMiddleware
from engage.middleware.rate_limit import PublicBookingRateLimitMiddleware
from engage.middleware.request_logging import RequestLoggingMiddleware
from engage.otel import get_fastapi_server_request_hook, setup_otel
from engage.workflows.dispatcher import WorkflowDispatcher


configure_logging()
logger = logging.getLogger("engage.lifecycle")


@contextmanager
def _workflow_session_scope():
    override = app.dependency_overrides.get(get_db) if "app" in globals() else None
    if override is None:
        session = SessionLocal()
        try:
            yield session
        finally:
            session.close()
        return

    generator = override()
    session = next(generator)
    try:
        yield session
    finally:
        try:
            next(generator)
        except StopIteration:
            pass


workflow_dispatcher = WorkflowDispatcher(session_scope=_workflow_session_scope)


def _on_system_started(event: InternalEvent) -> None:
    logger.info("system_event", extra={"event_name": event.name})


@asynccontextmanager
async def lifespan(app: FastAPI):
    event_bus.subscribe("system.started", _on_system_started)
    workflow_dispatcher.register(event_bus)
    event_bus.publish("system.started", {"service": "api"})
    try:
        yield
    finally:
        workflow_dispatcher.unregister(event_bus)


app = FastAPI(title="Engage API", version="0.1.0", lifespan=lifespan)
app.add_middleware(PublicBookingRateLimitMiddleware)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)


@app.exception_handler(EngageError)
async def handle_engage_error(request: Request, exc: EngageError) -> JSONResponse:
    return error_response(
        request,
        status_code=status_for_error(exc),
        code=exc.code,
        message=exc.message,
        details=exc.details,
    )


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=f"http_{exc.status_code}",
        message=str(exc.detail),
        details=exc.detail,
    )


settings = get_settings()
if settings.otel_enabled:
    setup_otel("engage-api", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
