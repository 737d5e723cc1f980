import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, status
from app.core.db import init_db, close_db
from app.api.v1.events import router as events_router
from app.api.v1.orders import router as orders_router
from app.api.v1.outbox import router as outbox_router
from app.consumers.outbox_dispatcher import build_dispatcher
from app.core.config import PROJECT_NAME, RUN_DISPATCHER, VERSION
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging_config import configure_logging
from app.events.message_bus import LocalMessageBus

configure_logging()
log = logging.getLogger("app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Opens the event store and, when enabled, runs an in-process outbox dispatcher."""
    log.info(f"Starting {PROJECT_NAME} v{VERSION}...")
    await init_db()

    dispatcher = None
    if RUN_DISPATCHER:
        dispatcher = build_dispatcher(LocalMessageBus())
        dispatcher.start()
    app.state.dispatcher = dispatcher

    yield

    # Let the in-flight batch finish before the connections go away
    if dispatcher is not None:
        await dispatcher.stop()
    await close_db()
    log.info(f"{PROJECT_NAME} stopped.")

app = FastAPI(
    title=PROJECT_NAME,
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

# Demo order commands plus the audit and outbox read APIs
app.include_router(orders_router, prefix="/api/v1/orders", tags=["Orders"])
app.include_router(events_router, prefix="/api/v1/events", tags=["Event Audit"])
app.include_router(outbox_router, prefix="/api/v1/outbox", tags=["Outbox"])


setup_exception_handlers(app)

@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check():
    """Liveness probe; does not touch the database."""
    return {"status": "ok", "app_name": PROJECT_NAME}
