import os

# Database Configuration
# SQLite by default; point DATABASE_URL at Postgres (postgres://...) in deployment
DB_URL = os.getenv("DATABASE_URL", "sqlite://db.sqlite3")

# Application Metadata
PROJECT_NAME = "Domain Event Store"
VERSION = "1.0.0"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Outbox Dispatcher Configuration
POLLING_INTERVAL = float(os.getenv("POLLING_INTERVAL", 2.0)) # Seconds between claim cycles when idle
MAX_ATTEMPTS = int(os.getenv("MAX_ATTEMPTS", 3)) # Failed publishes before an event is dead-lettered
BATCH_SIZE = int(os.getenv("BATCH_SIZE", 50)) # How many events to claim per cycle
PUBLISH_TIMEOUT = float(os.getenv("PUBLISH_TIMEOUT", 10.0)) # Upper bound for a single bus publish
CLAIM_TIMEOUT = float(os.getenv("CLAIM_TIMEOUT", 60.0)) # Lease length; must exceed PUBLISH_TIMEOUT
DISPATCHER_WORKERS = int(os.getenv("DISPATCHER_WORKERS", 1)) # Publish workers per dispatcher
SHUTDOWN_TIMEOUT = float(os.getenv("SHUTDOWN_TIMEOUT", 30.0)) # Grace period for the in-flight batch

# Run a dispatcher inside the API process (otherwise run app.consumers.outbox_dispatcher)
RUN_DISPATCHER = os.getenv("RUN_DISPATCHER", "false").lower() in ("1", "true", "yes")
