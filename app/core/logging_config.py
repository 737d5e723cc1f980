import logging

from app.core.config import LOG_LEVEL

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = LOG_LEVEL) -> None:
    """Configures the root logger once for the API and the dispatcher process."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # Tortoise logs every query at DEBUG
    logging.getLogger("tortoise").setLevel(logging.INFO)
