"""Upload authorization and client-provenance layer for a resumable upload engine."""

from .config import UploadServerConfig  # noqa: F401
from .runtime import UploadServerRuntime  # noqa: F401
