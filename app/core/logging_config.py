import logging
import sys
from typing import Optional

from app.core.config import settings

DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once for the API process or a sync client."""
    level_name = (level or settings.LOG_LEVEL).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=settings.LOG_FORMAT or DEFAULT_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )
