"""AssemblyAI transcription client with a bounded polling loop."""
import threading
from typing import Any, Dict, Optional

import requests

from media_extractor import settings
from media_extractor.logging_conf import logger


class TranscriptionError(Exception):
    """The transcription job failed, timed out or was cancelled."""


class TranscriptionClient:
    """Uploads audio, creates a transcript job and polls it to completion."""

    def __init__(self, api_key: Optional[str] = None, session: Optional[requests.Session] = None,
                 base_url: Optional[str] = None, language: Optional[str] = None,
                 poll_interval: float = None, max_polls: int = None,
                 stop_event: Optional[threading.Event] = None):
        self.base_url = (base_url or settings.ASSEMBLYAI_BASE_URL).rstrip("/")
        self.language = language or settings.TRANSCRIPTION_LANGUAGE
        self.poll_interval = settings.TRANSCRIPTION_POLL_INTERVAL if poll_interval is None else poll_interval
        self.max_polls = max_polls or settings.TRANSCRIPTION_MAX_POLLS
        self.stop_event = stop_event or threading.Event()
        self.session = session or requests.Session()
        self.session.headers.update({"authorization": api_key or settings.ASSEMBLYAI_API_KEY or ""})

    def transcribe(self, audio: bytes) -> str:
        """
        Transcribe raw audio bytes.

        Polls every `poll_interval` seconds at most `max_polls` times so the
        call stays inside one invocation's time budget.

        Raises:
            TranscriptionError when the job errors, the poll budget runs out
            or the stop event is set
        """
        upload_url = self.upload(audio)
        job_id = self.create_job(upload_url)
        logger.info(f"AssemblyAI job {job_id} created, polling up to {self.max_polls}x")

        for poll in range(1, self.max_polls + 1):
            if self.stop_event.wait(self.poll_interval):
                raise TranscriptionError(f"AssemblyAI job {job_id}: cancelled")

            job = self.get_job(job_id)
            status = job.get("status")
            if status == "completed":
                text = job.get("text") or ""
                logger.info(f"AssemblyAI job {job_id} completed after {poll} polls: {len(text)} chars")
                return text
            if status == "error":
                raise TranscriptionError(f"AssemblyAI error: {job.get('error')}")
            logger.debug(f"AssemblyAI job {job_id}: {status} (poll {poll})")

        raise TranscriptionError(f"AssemblyAI job {job_id}: timed out after {self.max_polls} polls")

    def upload(self, audio: bytes) -> str:
        data = self._request(
            "POST", "/upload", data=audio, headers={"Content-Type": "application/octet-stream"}
        )
        return data["upload_url"]

    def create_job(self, audio_url: str) -> str:
        data = self._request(
            "POST", "/transcript", json={"audio_url": audio_url, "language_code": self.language}
        )
        return data["id"]

    def get_job(self, job_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/transcript/{job_id}")

    def _request(self, method: str, endpoint: str, **kwargs) -> Dict[str, Any]:
        response = self.session.request(
            method=method,
            url=f"{self.base_url}{endpoint}",
            timeout=settings.TRANSCRIPTION_TIMEOUT,
            **kwargs,
        )
        response.raise_for_status()
        return response.json()
