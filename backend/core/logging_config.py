import logging

from core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = None) -> None:
    """Configure root logging once for the API process and operator scripts."""
    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level), logging.INFO),
        format=LOG_FORMAT,
    )
