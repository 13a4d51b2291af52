"""Talkpipe - resumable talking-avatar generation pipeline.

This module provides startup validation so misconfiguration fails fast
before any stage request is issued. Call validate_settings() during
application startup.
"""

import logging
from typing import TYPE_CHECKING, Optional
from urllib.parse import urlparse

if TYPE_CHECKING:
    from talkpipe.config import Settings

__version__ = "0.1.0"

logger = logging.getLogger(__name__)


def validate_settings(app_settings: Optional["Settings"] = None) -> None:
    """Validate configuration required by the pipeline.

    Raises:
        RuntimeError: If the service URL or pipeline timings are unusable.
    """
    if app_settings is None:
        from talkpipe.config import settings as app_settings

    parsed = urlparse(app_settings.services.base_url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise RuntimeError(
            f"Invalid services.base_url: {app_settings.services.base_url!r}. "
            "Set TALKPIPE_SERVICES__BASE_URL or services.base_url in config.yaml "
            "to an http(s) URL, e.g. http://localhost:3001"
        )

    pipeline = app_settings.pipeline
    if pipeline.poll_interval < 0 or pipeline.video_retry_backoff < 0:
        raise RuntimeError("Pipeline poll_interval and video_retry_backoff must be >= 0")
    if pipeline.video_max_attempts < 1:
        raise RuntimeError("Pipeline video_max_attempts must be at least 1")

    logger.info(f"Settings validated: services at {app_settings.services.base_url}")
