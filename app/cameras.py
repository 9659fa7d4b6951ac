"""
Alpen-Webcams fetcher - Camera catalogue.

Each camera names the archive it is filed under. Archive images live at:
    https://<mirror>/webcam/<identifier>/<YYYY>/<MM>/<DD>/<HHmm>_hd.jpg
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_ARCHIVE_BASE = "https://www.foto-webcam.org/webcam/"

_ARCHIVE_BASE_RE = re.compile(r"(https://([^/]+)/webcam/)([^/]+)")


@dataclass(frozen=True)
class CameraSource:
    """A selected camera and the URL template of its archive."""

    display_name: str
    identifier: str
    archive_url_template: str

    @property
    def archive_base(self) -> str:
        """
        Return the ``https://<host>/webcam/`` prefix of the archive.

        Taken from the URL template so a camera can live on another mirror.
        Falls back to DEFAULT_ARCHIVE_BASE when the template does not match.
        """
        match = _ARCHIVE_BASE_RE.search(self.archive_url_template or "")
        if match:
            return match.group(1)
        return DEFAULT_ARCHIVE_BASE

    def to_dict(self) -> dict:
        return {
            "name": self.display_name,
            "value": self.identifier,
            "req_url": self.archive_url_template,
        }


CAMERAS: tuple[CameraSource, ...] = (
    CameraSource(
        "Wallberg",
        "wallberg",
        "https://www.foto-webcam.org/webcam/wallberg/yyyy/mm/dd/hhmm_hd.jpg",
    ),
    CameraSource(
        "Dietramszell",
        "dietramszell",
        "https://www.foto-webcam.org/webcam/dietramszell/yyyy/mm/dd/hhmm_hd.jpg",
    ),
    CameraSource(
        "Zugspitze Ost",
        "zugspitze-ost",
        "https://www.foto-webcam.eu/webcam/zugspitze-ost/2021/05/16/0740_hd.jpg",
    ),
    CameraSource(
        "Samerberg",
        "samerberg",
        "https://www.foto-webcam.eu/webcam/samerberg/2021/05/16/0740_hd.jpg",
    ),
    CameraSource(
        "Kochelsee",
        "kochelsee",
        "https://www.foto-webcam.eu/webcam/kochelsee/2021/05/16/0740_hd.jpg",
    ),
    CameraSource(
        "Buchstein/TegernseerHütte",
        "buchstein",
        "https://www.foto-webcam.eu/webcam/buchstein/2021/05/16/0740_hd.jpg",
    ),
    CameraSource(
        "Bozen Blick",
        "gantkofel",
        "https://www.foto-webcam.eu/webcam/gantkofel/2021/05/16/0740_hd.jpg",
    ),
)


def find_camera(identifier: str) -> CameraSource | None:
    """Look up a catalogue camera by identifier (case-insensitive)."""
    wanted = (identifier or "").strip().lower()
    if not wanted:
        return None
    for camera in CAMERAS:
        if camera.identifier == wanted:
            return camera
    return None


def resolve_camera(config: dict) -> CameraSource | None:
    """
    Resolve the configured camera once at startup.

    ``webcam.camera`` picks the catalogue entry; ``webcam.req_url`` (optional)
    replaces its archive URL template. Returns None when no camera is selected
    or the identifier is unknown.
    """
    webcam = config.get("webcam") or {}
    identifier = (webcam.get("camera") or "").strip()
    if not identifier:
        return None
    camera = find_camera(identifier)
    if camera is None:
        logger.debug("Camera %r is not in the catalogue", identifier)
        return None
    req_url = (webcam.get("req_url") or "").strip()
    if req_url:
        camera = CameraSource(camera.display_name, camera.identifier, req_url)
        logger.debug("Camera %s uses URL template override %s", identifier, req_url)
    return camera
