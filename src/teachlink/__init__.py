"""TeachLink mobile client core: session lifecycle, token refresh and entitlements."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("teachlink")
except PackageNotFoundError:
    __version__ = "0.0.0"
