import logging
import sys

from ..config import settings

logger = logging.getLogger("shadowsheet")

if not logger.handlers:
    _handler = logging.StreamHandler(sys.stdout)
    _handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
    )
    logger.addHandler(_handler)

logger.setLevel(settings.LOG_LEVEL.upper())
