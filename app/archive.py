"""
Alpen-Webcams fetcher - Archive client.

Builds snapshot URLs for a camera and downloads a single image:
    <archive_base><identifier>/<YYYY>/<MM>/<DD>/<HHmm>_hd.jpg
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime

import requests
import urllib3

from app.cameras import CameraSource
from app.constants import DEFAULT_REQUEST_TIMEOUT_SECONDS, MILLISECONDS_PER_SECOND

logger = logging.getLogger(__name__)

# The archive's TLS chain does not verify with stock CA bundles, so requests are
# made with verify=False; silence urllib3's per-request warning about it.
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

_USER_AGENT = "Mozilla/5.0 (compatible; Alpencams-Fetcher/0.9)"

ARCHIVE_DATE_FORMAT = "%Y/%m/%d/%H%M"
IMAGE_SUFFIX = "_hd.jpg"


@dataclass(frozen=True)
class ArchiveResponse:
    status_code: int
    body: bytes
    elapsed_ms: int

    @property
    def ok(self) -> bool:
        """True for a 200 response carrying an image body."""
        return self.status_code == 200 and bool(self.body)


def build_image_url(camera: CameraSource, target: datetime) -> str:
    """Return the archive URL of ``camera``'s snapshot filed at ``target``."""
    date_url = target.strftime(ARCHIVE_DATE_FORMAT)
    return f"{camera.archive_base}{camera.identifier}/{date_url}{IMAGE_SUFFIX}"


def fetch_image(
    url: str,
    timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    verify: bool = False,
) -> ArchiveResponse:
    """
    Issue one GET for an archive image.

    No retries: the scheduler's periodic re-evaluation retries for us.
    Raises requests.RequestException on transport errors and timeouts.
    """
    started = time.monotonic()
    resp = requests.get(
        url,
        timeout=timeout,
        verify=verify,
        headers={"User-Agent": _USER_AGENT},
    )
    elapsed_ms = int((time.monotonic() - started) * MILLISECONDS_PER_SECOND)
    logger.debug("GET %s -> %s in %d ms", url, resp.status_code, elapsed_ms)
    return ArchiveResponse(
        status_code=resp.status_code,
        body=resp.content or b"",
        elapsed_ms=elapsed_ms,
    )
