"""Download media bytes, following the HTML meta-refresh interstitial once."""
import re
from dataclasses import dataclass
from typing import Optional

import requests

from media_extractor import settings
from media_extractor.logging_conf import logger
from media_extractor.sniffer import normalize_mime

# Some webhook-testing endpoints answer with an HTML page carrying the real
# location in a meta refresh / JS redirect instead of a proper 3xx.
REDIRECT_SCAN_BYTES = 2000
REDIRECT_URL_RES = (
    re.compile(r"url='([^']+)'", re.IGNORECASE),
    re.compile(r'url="([^"]+)"', re.IGNORECASE),
)


@dataclass
class DownloadedMedia:
    content: bytes
    content_type: str
    url: str
    redirected: bool = False


def find_redirect_url(content: bytes) -> Optional[str]:
    """Return the interstitial's target URL when the body is an HTML redirect page."""
    if not content or content[:1] != b"<":
        return None
    head = content[:REDIRECT_SCAN_BYTES].decode("utf-8", errors="ignore")
    for pattern in REDIRECT_URL_RES:
        match = pattern.search(head)
        if match and match.group(1):
            return match.group(1)
    return None


class Downloader:
    """Fetches attachment bytes over HTTP."""

    def __init__(self, session: Optional[requests.Session] = None, timeout: int = None):
        self.session = session or requests.Session()
        self.timeout = timeout or settings.DOWNLOAD_TIMEOUT

    def download(self, url: str) -> DownloadedMedia:
        """
        Download a media URL.

        Raises:
            requests.RequestException on network errors or non-2xx status
        """
        media = self._get(url)

        redirect_url = find_redirect_url(media.content)
        if redirect_url:
            logger.info(f"HTML interstitial from {url}, following redirect to {redirect_url}")
            media = self._get(redirect_url)
            media.redirected = True

        logger.info(f"Downloaded {len(media.content)} bytes ({media.content_type or 'no content-type'})"
                    f"{' [redirect]' if media.redirected else ''}")
        return media

    def _get(self, url: str) -> DownloadedMedia:
        response = self.session.get(url, timeout=self.timeout)
        response.raise_for_status()
        return DownloadedMedia(
            content=response.content,
            content_type=normalize_mime(response.headers.get("Content-Type")),
            url=url,
        )
