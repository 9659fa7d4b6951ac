"""
Alpen-Webcams fetcher - Flask host surface.

Stands in for the display host:
  - Status: scheduler state, version, and recent log entries
  - Visibility: report the display going to sleep or waking up
  - Data requests: ask for the current webcam image
  - Assets: serve fetched image bytes
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from io import BytesIO

from flask import Flask, abort, jsonify, request, send_file

from app.cameras import CAMERAS
from app.constants import CHANNEL_WEBCAM_IMAGE, DEFAULT_LOG_DISPLAY_COUNT
from app.scheduler import get_log_entries
from app.version import GIT_SHA, VERSION

logger = logging.getLogger(__name__)

app = Flask(__name__)

_CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
}


def _host():
    host = app.config.get("HOST")
    if host is None:
        abort(503)
    return host


def _mimetype(content_type: str) -> str:
    """Map an asset content type (e.g. ``jpg``) to a MIME type."""
    if "/" in content_type:
        return content_type
    return _CONTENT_TYPES.get(content_type.lower(), "application/octet-stream")


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@app.route("/api/status")
def api_status():
    """JSON status endpoint for health checks and monitoring."""
    config = app.config.get("ALPENCAMS_CONFIG", {})
    fetcher = app.config.get("FETCH_SCHEDULER")
    log_count = config.get("web", {}).get(
        "log_display_count", DEFAULT_LOG_DISPLAY_COUNT
    )
    recent_logs = list(reversed(get_log_entries()))[:log_count]
    host = app.config.get("HOST")
    return jsonify(
        {
            "status": "ok",
            "version": VERSION,
            "git_sha": GIT_SHA or None,
            "scheduler": fetcher.snapshot() if fetcher else None,
            "visibility": (
                host.events.visibility_state(CHANNEL_WEBCAM_IMAGE) if host else None
            ),
            "assets": len(host.assets) if host else 0,
            "recent_logs": recent_logs,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    )


@app.route("/api/cameras")
def api_cameras():
    return jsonify({"cameras": [camera.to_dict() for camera in CAMERAS]})


@app.route("/api/visibility", methods=["POST"])
def api_visibility():
    """Deliver a visibility change, e.g. ``{"state": "SLEEP"}``."""
    body = request.get_json(silent=True) or {}
    state = str(body.get("state") or request.form.get("state") or "").strip()
    if not state:
        return jsonify({"error": "missing 'state'"}), 400
    state = state.upper()
    delivered = _host().events.emit_visibility(CHANNEL_WEBCAM_IMAGE, state)
    logger.debug("Visibility %s delivered to %d handler(s)", state, delivered)
    return jsonify({"state": state, "delivered": delivered})


@app.route("/api/webcam_image")
def api_webcam_image():
    """Data request: the last fetched image, waiting for a fetch in flight."""
    data = _host().events.request_data(CHANNEL_WEBCAM_IMAGE, request.args.to_dict())
    return jsonify({"data": data})


@app.route("/api/webcam_image/pushed")
def api_webcam_image_pushed():
    """What was last pushed to the webcam_image channel."""
    return jsonify(_host().push.snapshot(CHANNEL_WEBCAM_IMAGE))


@app.route("/assets")
def serve_asset():
    """Serve an asset by ``uid`` query parameter; 404 when missing or expired."""
    uid = request.args.get("uid", "")
    if not uid:
        abort(404)
    asset = _host().assets.get(uid)
    if asset is None:
        abort(404)
    return send_file(
        BytesIO(asset.data),
        mimetype=_mimetype(asset.content_type),
        as_attachment=False,
        download_name=uid.rsplit("/", 1)[-1] or "image",
    )
