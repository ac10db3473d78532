"""Tests for the backoff schedule and outcome classification."""
from datetime import timedelta

import pytest

from media_extractor.queue.models import MediaType, Status
from media_extractor.retry_policy import backoff_seconds, classify_outcome, decide_failure

from conftest import NOW

SCHEDULE = (30, 120, 600)


@pytest.mark.parametrize("attempts,expected", [(1, 30), (2, 120), (3, 600), (7, 600)])
def test_backoff_schedule_repeats_last_entry(attempts, expected):
    assert backoff_seconds(attempts, SCHEDULE) == expected


def test_backoff_is_non_decreasing():
    delays = [backoff_seconds(n, SCHEDULE) for n in range(1, 10)]
    assert delays == sorted(delays)


def test_first_failure_requeues_with_backoff():
    """Test that a failure below the limit schedules a retry."""
    decision = decide_failure(0, 3, NOW, SCHEDULE)
    assert decision.attempts == 1
    assert decision.status == Status.QUEUED
    assert decision.next_retry_at == NOW + timedelta(seconds=30)
    assert not decision.terminal


def test_second_failure_uses_next_delay():
    decision = decide_failure(1, 3, NOW, SCHEDULE)
    assert decision.attempts == 2
    assert decision.next_retry_at == NOW + timedelta(seconds=120)


def test_reaching_max_attempts_is_terminal():
    """Test that the last allowed failure ends in error without a retry time."""
    decision = decide_failure(2, 3, NOW, SCHEDULE)
    assert decision.attempts == 3
    assert decision.status == Status.ERROR
    assert decision.next_retry_at is None
    assert decision.terminal


def test_attempts_never_exceed_max():
    decision = decide_failure(5, 3, NOW, SCHEDULE)
    assert decision.attempts == 3
    assert decision.status == Status.ERROR


def test_classify_outcome():
    """Test that empty text needs review except for video."""
    assert classify_outcome("some text", MediaType.IMAGE) == Status.DONE
    assert classify_outcome("", MediaType.IMAGE) == Status.NEEDS_REVIEW
    assert classify_outcome("   \n", MediaType.PDF) == Status.NEEDS_REVIEW
    assert classify_outcome(None, MediaType.UNKNOWN) == Status.NEEDS_REVIEW
    assert classify_outcome(None, MediaType.VIDEO) == Status.DONE
