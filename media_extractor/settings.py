"""Configuration for the media text extraction queue."""
import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# Base paths
BASE_DIR = Path(__file__).resolve().parent.parent
LOGS_DIR = BASE_DIR / "logs"
LOGS_DIR.mkdir(exist_ok=True)

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
BETTERSTACK_SOURCE_TOKEN = os.getenv("BETTERSTACK_SOURCE_TOKEN")
BETTERSTACK_INGEST_HOST = os.getenv("BETTERSTACK_INGEST_HOST")

# Database connection
DATABASE_URL = os.getenv("DATABASE_URL")

# Queue / scheduler
CLAIM_BATCH_SIZE = int(os.getenv("CLAIM_BATCH_SIZE", "50"))
MAX_ATTEMPTS = int(os.getenv("MAX_ATTEMPTS", "3"))
BACKOFF_SCHEDULE = tuple(
    int(s) for s in os.getenv("BACKOFF_SCHEDULE", "30,120,600").split(",") if s.strip()
)
# Must exceed attempt_budget_seconds(), or a live attempt gets requeued under its worker
STUCK_PROCESSING_MINUTES = int(os.getenv("STUCK_PROCESSING_MINUTES", "90"))
CRON_MAX_ITEMS = int(os.getenv("CRON_MAX_ITEMS", "5"))
POLL_INTERVAL = int(os.getenv("POLL_INTERVAL", "30"))  # seconds between polls when idle

# Download / sniffing
DOWNLOAD_TIMEOUT = int(os.getenv("DOWNLOAD_TIMEOUT", "60"))
MIN_EXTRACTABLE_BYTES = int(os.getenv("MIN_EXTRACTABLE_BYTES", "1000"))

# PDF
PDF_TEXT_MIN_CHARS = int(os.getenv("PDF_TEXT_MIN_CHARS", "50"))
PDF_IMAGE_MIN_BYTES = int(os.getenv("PDF_IMAGE_MIN_BYTES", "5000"))

# Google Vision
GOOGLE_APPLICATION_CREDENTIALS = os.getenv("GOOGLE_APPLICATION_CREDENTIALS")
GOOGLE_CLIENT_EMAIL = os.getenv("GOOGLE_CLIENT_EMAIL")
GOOGLE_PRIVATE_KEY = os.getenv("GOOGLE_PRIVATE_KEY")
OCR_TIMEOUT = int(os.getenv("OCR_TIMEOUT", "60"))
LABEL_TIMEOUT = int(os.getenv("LABEL_TIMEOUT", "30"))
LABEL_MAX_RESULTS = int(os.getenv("LABEL_MAX_RESULTS", "10"))

# AssemblyAI transcription
ASSEMBLYAI_API_KEY = os.getenv("ASSEMBLYAI_API_KEY")
ASSEMBLYAI_BASE_URL = os.getenv("ASSEMBLYAI_BASE_URL", "https://api.assemblyai.com/v2")
TRANSCRIPTION_LANGUAGE = os.getenv("TRANSCRIPTION_LANGUAGE", "pt")
TRANSCRIPTION_POLL_INTERVAL = float(os.getenv("TRANSCRIPTION_POLL_INTERVAL", "5"))
TRANSCRIPTION_MAX_POLLS = int(os.getenv("TRANSCRIPTION_MAX_POLLS", "48"))
TRANSCRIPTION_TIMEOUT = int(os.getenv("TRANSCRIPTION_TIMEOUT", "60"))

# Object storage (S3-compatible)
S3_BUCKET_NAME = os.getenv("S3_BUCKET_NAME")
S3_ENDPOINT = os.getenv("S3_ENDPOINT")
S3_REGION = os.getenv("S3_REGION")
S3_PUBLIC_URL = os.getenv("S3_PUBLIC_URL")
S3_ACCESS_KEY_ID = os.getenv("S3_ACCESS_KEY_ID")
S3_SECRET_ACCESS_KEY = os.getenv("S3_SECRET_ACCESS_KEY")
STORAGE_PREFIX = os.getenv("STORAGE_PREFIX", "file-processing")
UPLOAD_MAX_RETRIES = int(os.getenv("UPLOAD_MAX_RETRIES", "2"))
UPLOAD_TIMEOUT = int(os.getenv("UPLOAD_TIMEOUT", "60"))


def attempt_budget_seconds() -> float:
    """Longest a single attempt can take with the configured timeouts."""
    download = 2 * DOWNLOAD_TIMEOUT  # one meta-refresh hop
    # original and embedded PDF image, each with linear conflict backoff
    uploads = 2 * sum(UPLOAD_TIMEOUT + attempt for attempt in range(UPLOAD_MAX_RETRIES + 1))
    vision = 2 * OCR_TIMEOUT + LABEL_TIMEOUT
    transcription = 2 * TRANSCRIPTION_TIMEOUT + TRANSCRIPTION_MAX_POLLS * (
        TRANSCRIPTION_POLL_INTERVAL + TRANSCRIPTION_TIMEOUT)
    return download + uploads + vision + transcription


def validate_config():
    """Validate required configuration."""
    errors = []

    if not DATABASE_URL:
        errors.append("DATABASE_URL is required")

    if not ASSEMBLYAI_API_KEY:
        errors.append("ASSEMBLYAI_API_KEY is required")

    if not GOOGLE_APPLICATION_CREDENTIALS and not (GOOGLE_CLIENT_EMAIL and GOOGLE_PRIVATE_KEY):
        errors.append("GOOGLE_APPLICATION_CREDENTIALS or GOOGLE_CLIENT_EMAIL + GOOGLE_PRIVATE_KEY is required")

    for name in ("S3_BUCKET_NAME", "S3_PUBLIC_URL", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        if not globals()[name]:
            errors.append(f"{name} is required")

    if not BACKOFF_SCHEDULE:
        errors.append("BACKOFF_SCHEDULE must list at least one delay")
    elif list(BACKOFF_SCHEDULE) != sorted(BACKOFF_SCHEDULE):
        errors.append(f"BACKOFF_SCHEDULE must be non-decreasing: {BACKOFF_SCHEDULE}")

    if MAX_ATTEMPTS < 1:
        errors.append(f"MAX_ATTEMPTS must be >= 1: {MAX_ATTEMPTS}")

    budget = attempt_budget_seconds()
    if STUCK_PROCESSING_MINUTES * 60 <= budget:
        errors.append(f"STUCK_PROCESSING_MINUTES ({STUCK_PROCESSING_MINUTES}) must exceed the "
                      f"longest attempt ({budget / 60:.0f} min with current timeouts)")

    if errors:
        raise ValueError("Config errors:\n  " + "\n  ".join(errors))
