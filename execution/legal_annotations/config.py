"""
Client-side settings for the annotation layer.

Values come from the environment (a local .env is honored) with defaults
suitable for development against a locally running API.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

DEFAULT_API_URL = "http://localhost:8000/api/v1"


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


@dataclass
class AnnotationSettings:
    """Settings shared by the API client, authoring layer and status polling."""
    api_url: str = DEFAULT_API_URL
    api_token: str = ""
    request_timeout: float = 30.0
    min_shape_size: float = 5.0
    default_stroke_width: float = 2.0
    poll_interval: float = 2.0
    poll_timeout: float = 300.0

    def __post_init__(self):
        self.api_url = self.api_url.rstrip("/")
        for name in ("request_timeout", "poll_interval", "poll_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.min_shape_size < 0:
            raise ValueError("min_shape_size must be non-negative")
        if self.default_stroke_width <= 0:
            raise ValueError("default_stroke_width must be positive")

    @classmethod
    def from_env(cls, load_env_file: bool = True) -> "AnnotationSettings":
        """
        Build settings from environment variables.

        Recognized variables: ANNOTATION_API_URL, ANNOTATION_API_TOKEN,
        ANNOTATION_REQUEST_TIMEOUT, ANNOTATION_MIN_SHAPE_SIZE,
        ANNOTATION_STROKE_WIDTH, STATUS_POLL_INTERVAL, STATUS_POLL_TIMEOUT.
        """
        if load_env_file:
            load_dotenv()

        return cls(
            api_url=os.getenv("ANNOTATION_API_URL", DEFAULT_API_URL),
            api_token=os.getenv("ANNOTATION_API_TOKEN", ""),
            request_timeout=_get_float("ANNOTATION_REQUEST_TIMEOUT", 30.0),
            min_shape_size=_get_float("ANNOTATION_MIN_SHAPE_SIZE", 5.0),
            default_stroke_width=_get_float("ANNOTATION_STROKE_WIDTH", 2.0),
            poll_interval=_get_float("STATUS_POLL_INTERVAL", 2.0),
            poll_timeout=_get_float("STATUS_POLL_TIMEOUT", 300.0),
        )
