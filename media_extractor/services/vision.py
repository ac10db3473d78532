"""Google Cloud Vision client for OCR and label detection."""
from typing import Any, Dict, List, Optional

import requests
import google.auth.transport.requests
from google.oauth2 import service_account

from media_extractor import settings
from media_extractor.logging_conf import logger

VISION_SCOPE = "https://www.googleapis.com/auth/cloud-vision"
ANNOTATE_URL = "https://vision.googleapis.com/v1/images:annotate"


def build_credentials():
    """
    Build service-account credentials for Vision from settings.

    Called once at application start; the result is passed to VisionClient.
    """
    if settings.GOOGLE_APPLICATION_CREDENTIALS:
        return service_account.Credentials.from_service_account_file(
            settings.GOOGLE_APPLICATION_CREDENTIALS, scopes=[VISION_SCOPE]
        )
    private_key = (settings.GOOGLE_PRIVATE_KEY or "").strip("\"'").replace("\\n", "\n")
    info = {
        "type": "service_account",
        "client_email": settings.GOOGLE_CLIENT_EMAIL,
        "private_key": private_key,
        "token_uri": "https://oauth2.googleapis.com/token",
    }
    return service_account.Credentials.from_service_account_info(info, scopes=[VISION_SCOPE])


class VisionClient:
    """Calls the images:annotate endpoint with a bearer token from injected credentials."""

    def __init__(self, credentials, session: Optional[requests.Session] = None):
        self.credentials = credentials
        self.session = session or requests.Session()
        self._auth_request = google.auth.transport.requests.Request()

    def ocr(self, image_url: str) -> str:
        """Return the full recognized text of the image at `image_url`, or ''."""
        logger.info(f"Vision OCR: {image_url}")
        response = self._annotate(image_url, {"type": "TEXT_DETECTION"}, settings.OCR_TIMEOUT)
        annotations = response.get("textAnnotations") or []
        if not annotations:
            logger.info("Vision OCR: no text detected")
            return ""
        text = annotations[0].get("description") or ""
        logger.info(f"Vision OCR: {len(text)} chars")
        return text

    def labels(self, image_url: str) -> List[str]:
        """Return label descriptions for the image at `image_url`."""
        feature = {"type": "LABEL_DETECTION", "maxResults": settings.LABEL_MAX_RESULTS}
        response = self._annotate(image_url, feature, settings.LABEL_TIMEOUT)
        labels = [a.get("description") for a in response.get("labelAnnotations") or []]
        return [label for label in labels if label]

    def _token(self) -> str:
        if not self.credentials.valid:
            self.credentials.refresh(self._auth_request)
        return self.credentials.token

    def _annotate(self, image_url: str, feature: Dict[str, Any], timeout: int) -> Dict[str, Any]:
        body = {
            "requests": [{
                "image": {"source": {"imageUri": image_url}},
                "features": [feature],
            }]
        }
        response = self.session.post(
            ANNOTATE_URL,
            json=body,
            headers={"Authorization": f"Bearer {self._token()}"},
            timeout=timeout,
        )
        response.raise_for_status()
        result = (response.json().get("responses") or [{}])[0]
        if result.get("error"):
            # Vision reports per-image failures inside a 200 response
            raise VisionError(result["error"].get("message") or str(result["error"]))
        return result


class VisionError(Exception):
    """Vision accepted the request but failed to annotate the image."""
