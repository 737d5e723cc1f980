import logging

from tortoise import Tortoise

from app.core.config import DB_URL

log = logging.getLogger("app.db")

# Model modules registered with Tortoise under the "models" app
MODELS_MODULES = [
    "app.models.event_record",
    "app.models.order",
]


async def init_db(db_url: str = DB_URL, generate_schemas: bool = True):
    """Connects Tortoise to db_url (UTC-aware timestamps) and creates missing tables."""
    try:
        await Tortoise.init(
            db_url=db_url,
            modules={"models": MODELS_MODULES},
            use_tz=True,
            timezone="UTC",
        )
        if generate_schemas:
            # Creates domain_events with its indexes when missing
            await Tortoise.generate_schemas(safe=True)
        log.info("Database connection established and schemas generated.")
    except Exception as e:
        log.critical(f"Could not connect to database at {db_url}. Error: {e}")
        # Neither the API nor the dispatcher can run without the event log
        raise


async def close_db():
    """Releases every Tortoise connection; called on API and dispatcher shutdown."""
    await Tortoise.close_connections()
    log.info("Database connections closed.")
