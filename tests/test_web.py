"""
Tests for app.web - Flask host surface routes.
"""

from unittest.mock import patch

import pytest

from app.constants import CHANNEL_WEBCAM_IMAGE
from app.version import GIT_SHA, VERSION
from app.web import _mimetype
from app.web import app as flask_app

URL_1020 = "https://www.foto-webcam.org/webcam/wallberg/2024/06/15/1020_hd.jpg"


@pytest.fixture
def client(fetcher, host):
    flask_app.config["TESTING"] = True
    flask_app.config["ALPENCAMS_CONFIG"] = {"web": {"log_display_count": 10}}
    flask_app.config["HOST"] = host
    flask_app.config["FETCH_SCHEDULER"] = fetcher
    fetcher.start()
    with flask_app.test_client() as c:
        yield c
    fetcher.stop("test")
    flask_app.config.pop("HOST", None)
    flask_app.config.pop("FETCH_SCHEDULER", None)


def test_version_module_provides_version_and_sha():
    """VERSION is a non-empty string; GIT_SHA is a string (may be empty)."""
    assert isinstance(VERSION, str)
    assert len(VERSION) > 0
    assert isinstance(GIT_SHA, str)


def test_mimetype_maps_asset_content_types():
    assert _mimetype("jpg") == "image/jpeg"
    assert _mimetype("image/png") == "image/png"
    assert _mimetype("bin") == "application/octet-stream"


def test_api_status_reports_scheduler_state(client):
    resp = client.get("/api/status")
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["status"] == "ok"
    assert data["version"] == VERSION
    assert data["scheduler"]["camera"]["value"] == "wallberg"
    assert data["scheduler"]["status"] == "idle"
    assert isinstance(data["recent_logs"], list)


def test_api_cameras_lists_catalogue(client):
    data = client.get("/api/cameras").get_json()
    assert len(data["cameras"]) == 7
    assert {"name", "value", "req_url"} <= set(data["cameras"][0])


def test_visibility_requires_state(client):
    resp = client.post("/api/visibility", json={})
    assert resp.status_code == 400


def test_visibility_active_fetches_and_serves_image(
    client, host, make_response, inline_threads
):
    """Waking the display fetches; the image is then served as an asset."""
    with patch("app.archive.requests.get", return_value=make_response()):
        resp = client.post("/api/visibility", json={"state": "active"})

    assert resp.status_code == 200
    assert resp.get_json() == {"state": "ACTIVE", "delivered": 1}
    assert host.events.visibility_state(CHANNEL_WEBCAM_IMAGE) == "ACTIVE"

    data = client.get("/api/webcam_image").get_json()["data"]
    assert data["image"]["asset_uid"] == "img_" + URL_1020

    pushed = client.get("/api/webcam_image/pushed").get_json()
    assert pushed["payload"] == data
    assert pushed["loading"] is False

    asset = client.get("/assets", query_string={"uid": data["image"]["asset_uid"]})
    assert asset.status_code == 200
    assert asset.mimetype == "image/jpeg"
    assert asset.data == make_response().content


def test_visibility_sleep_cancels_timer(client, fetcher, make_response, inline_threads):
    with patch("app.archive.requests.get", return_value=make_response()):
        client.post("/api/visibility", json={"state": "ACTIVE"})
    client.post("/api/visibility", json={"state": "SLEEP"})
    assert fetcher.timer_active is False


def test_webcam_image_is_null_before_first_fetch(client):
    assert client.get("/api/webcam_image").get_json() == {"data": None}


def test_assets_missing_uid_returns_404(client):
    assert client.get("/assets").status_code == 404
    assert client.get("/assets", query_string={"uid": "img_nope"}).status_code == 404


def test_routes_return_503_without_host():
    flask_app.config["TESTING"] = True
    flask_app.config.pop("HOST", None)
    with flask_app.test_client() as c:
        assert c.get("/api/webcam_image").status_code == 503
