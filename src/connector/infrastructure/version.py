"""Connector version, logged once at startup."""

import tomllib
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

DISTRIBUTION_NAME = "fhir-outbox-connector"


def get_version() -> str:
    """Return the installed distribution version.

    A source checkout that was never installed reads pyproject.toml at the
    repository root instead.
    """
    try:
        return version(DISTRIBUTION_NAME)
    except PackageNotFoundError:
        pyproject = Path(__file__).parents[3] / "pyproject.toml"
        with pyproject.open("rb") as f:
            return tomllib.load(f)["project"]["version"]


__version__ = get_version()
