"""Installed tokenweave version."""

from importlib.metadata import PackageNotFoundError, version


def get_version() -> str:
    try:
        return version("tokenweave")
    except PackageNotFoundError:
        # running from a source tree without an install
        return "0+unknown"
