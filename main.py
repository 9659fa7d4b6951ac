"""
Alpen-Webcams fetcher - application entry point.

Starts the fetch scheduler for the configured camera and optionally the Flask
host surface.
"""

from __future__ import annotations

import logging
import os
import sys
import time

from apscheduler.schedulers.background import BackgroundScheduler

from app.config import load_config, validate_config
from app.constants import CHANNEL_WEBCAM_IMAGE, VISIBILITY_ACTIVE
from app.host import Host
from app.ntp import check_ntp_time
from app.scheduler import FetchScheduler, install_log_capture
from app.web import app


def setup_logging(config: dict) -> None:
    level_str = config.get("logging", {}).get("level", "INFO").upper()
    level = getattr(logging, level_str, logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    log_file = config.get("logging", {}).get("file", "")
    if log_file:
        try:
            log_dir = os.path.dirname(log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            handlers.append(logging.FileHandler(log_file))
        except OSError as exc:
            logging.getLogger(__name__).warning(
                "Could not open log file %s: %s. Logging to stdout only.",
                log_file,
                exc,
            )

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=handlers,
    )


def main() -> None:
    config = load_config()
    setup_logging(config)
    install_log_capture()

    logger = logging.getLogger(__name__)
    logger.info("Alpen-Webcams fetcher starting up.")

    for err in validate_config(config):
        logger.error("Config validation: %s", err)

    check_ntp_time()

    host = Host.from_config(config)
    scheduler = BackgroundScheduler(daemon=True)
    scheduler.start()

    fetcher = FetchScheduler.from_config(config, host, scheduler)
    fetcher.start()

    app.config["ALPENCAMS_CONFIG"] = config
    app.config["HOST"] = host
    app.config["FETCH_SCHEDULER"] = fetcher

    if config["schedule"].get("start_visible", True):
        host.events.emit_visibility(CHANNEL_WEBCAM_IMAGE, VISIBILITY_ACTIVE)

    try:
        if config["web"].get("enabled", True):
            host_addr = config["web"]["host"]
            port = int(config["web"]["port"])
            host_display = host_addr if host_addr != "0.0.0.0" else "localhost"
            logger.info("Web host surface at http://%s:%d", host_display, port)
            app.run(host=host_addr, port=port, debug=False, use_reloader=False)
        else:
            logger.info("Web host surface disabled; running scheduler only.")
            while True:
                time.sleep(3600)
    except KeyboardInterrupt:
        logger.info("Interrupted.")
    finally:
        fetcher.stop("shutdown")
        scheduler.shutdown(wait=False)
        logger.info("Fetcher shut down.")


if __name__ == "__main__":
    main()
