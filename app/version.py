"""
Alpen-Webcams fetcher - Version and build info.

The version comes from installed package metadata, else pyproject.toml.
GIT_SHA comes from the GIT_SHA env var (set at image build time).
"""

from __future__ import annotations

import os
import tomllib
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

_DIST_NAME = "alpencams"
_FALLBACK_VERSION = "0.9.2"


def _get_version() -> str:
    try:
        return version(_DIST_NAME)
    except PackageNotFoundError:
        pass
    pyproject = Path(__file__).resolve().parent.parent / "pyproject.toml"
    try:
        with open(pyproject, "rb") as fh:
            data = tomllib.load(fh)
    except (OSError, tomllib.TOMLDecodeError):
        return _FALLBACK_VERSION
    return data.get("project", {}).get("version", _FALLBACK_VERSION)


def _get_git_sha() -> str:
    return os.environ.get("GIT_SHA", "").strip()[:12]


VERSION = _get_version()
GIT_SHA = _get_git_sha()
