"""Logging for the extractor: stdout, rotating file and BetterStack."""
import logging
import sys
from logging.handlers import RotatingFileHandler
from logtail import LogtailHandler

from media_extractor import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FILE = settings.LOGS_DIR / "extractor.log"

# HTTP, S3 and parsing libraries log every request/page at INFO or DEBUG
NOISY_LOGGERS = ("urllib3", "botocore", "boto3", "s3transfer", "pypdf", "PIL", "google.auth")


def _betterstack_handler(formatter: logging.Formatter):
    kwargs = {"source_token": settings.BETTERSTACK_SOURCE_TOKEN}
    if settings.BETTERSTACK_INGEST_HOST:
        kwargs["host"] = settings.BETTERSTACK_INGEST_HOST
    handler = LogtailHandler(**kwargs)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(formatter)
    return handler


def setup_logging():
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = []

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setLevel(level)
    stdout_handler.setFormatter(formatter)
    root_logger.addHandler(stdout_handler)

    # 5 x 10 MB
    file_handler = RotatingFileHandler(LOG_FILE, maxBytes=10 * 1024 * 1024, backupCount=5)
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    if settings.BETTERSTACK_SOURCE_TOKEN:
        try:
            root_logger.addHandler(_betterstack_handler(formatter))
            root_logger.info(
                f"BetterStack logging enabled (host: {settings.BETTERSTACK_INGEST_HOST or 'default'})"
            )
        except Exception as e:
            root_logger.warning(f"BetterStack logging disabled: {e}")

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logging.getLogger("media_extractor")


logger = setup_logging()
