"""HTTP surface for the upload server."""

from .server import create_app  # noqa: F401
