import logging
import sys

from app.config import LOG_LEVEL


def setup_logging():
    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        "%H:%M:%S",
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        handlers=[handler],
        force=True,
    )

    # Per-request connection chatter is noise next to pipeline logs
    logging.getLogger("urllib3").setLevel(logging.WARNING)
