"""
Version information for the SplitSafe SDK.
"""
import importlib.metadata
import pathlib

import tomli

# Installed package metadata first, then the source tree's pyproject.toml
try:
    __version__ = importlib.metadata.version("splitsafe-sdk")
except importlib.metadata.PackageNotFoundError:
    try:
        path = pathlib.Path(__file__).parent.parent / "pyproject.toml"
        with path.open("rb") as f:
            data = tomli.load(f)
        __version__ = data["project"]["version"]
    except (FileNotFoundError, KeyError, tomli.TOMLDecodeError):
        __version__ = "0.1.0"
