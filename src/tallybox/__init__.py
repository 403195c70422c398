from importlib.metadata import PackageNotFoundError, version

from tallybox.config import APP_NAME


def get_version() -> str:
    try:
        return version(APP_NAME)
    except PackageNotFoundError:
        return "0.1.0"


__all__ = ["APP_NAME", "get_version"]
