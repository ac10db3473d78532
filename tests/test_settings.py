"""Tests for configuration validation."""
import pytest

from media_extractor import settings


@pytest.fixture
def configured(monkeypatch):
    for name in ("DATABASE_URL", "ASSEMBLYAI_API_KEY", "GOOGLE_APPLICATION_CREDENTIALS",
                 "S3_BUCKET_NAME", "S3_PUBLIC_URL", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.setattr(settings, name, "set")
    monkeypatch.setattr(settings, "STUCK_PROCESSING_MINUTES", 90)
    return monkeypatch


def test_default_stuck_threshold_outlasts_an_attempt():
    assert settings.STUCK_PROCESSING_MINUTES * 60 > settings.attempt_budget_seconds()


def test_attempt_budget_covers_transcription_polling(monkeypatch):
    monkeypatch.setattr(settings, "TRANSCRIPTION_MAX_POLLS", 48)
    monkeypatch.setattr(settings, "TRANSCRIPTION_POLL_INTERVAL", 5.0)
    monkeypatch.setattr(settings, "TRANSCRIPTION_TIMEOUT", 60)
    assert settings.attempt_budget_seconds() > 48 * 65


def test_valid_config_passes(configured):
    settings.validate_config()


def test_stuck_threshold_shorter_than_an_attempt_is_rejected(configured):
    configured.setattr(settings, "STUCK_PROCESSING_MINUTES", 5)

    with pytest.raises(ValueError, match="STUCK_PROCESSING_MINUTES"):
        settings.validate_config()


def test_config_errors_are_collected(configured):
    configured.setattr(settings, "DATABASE_URL", None)
    configured.setattr(settings, "MAX_ATTEMPTS", 0)

    with pytest.raises(ValueError) as exc:
        settings.validate_config()
    assert "DATABASE_URL is required" in str(exc.value)
    assert "MAX_ATTEMPTS must be >= 1" in str(exc.value)
