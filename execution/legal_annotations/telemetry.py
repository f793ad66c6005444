"""
User-facing notifications and error capture.

The annotation store reports outcomes through a Telemetry object handed to
it at construction time. LoggingTelemetry is the default and writes
everything to the standard logging tree.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

logger = logging.getLogger(__name__)


class Telemetry(ABC):
    """Sink for toast-style notifications and captured exceptions."""

    @abstractmethod
    def notify_success(self, message: str) -> None:
        pass

    @abstractmethod
    def notify_error(self, message: str, error: Optional[BaseException] = None) -> None:
        pass

    @abstractmethod
    def capture_exception(self, error: BaseException, context: Optional[dict] = None) -> None:
        pass


class LoggingTelemetry(Telemetry):
    """Routes notifications to ``logging``."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self._log = log or logger

    def notify_success(self, message: str) -> None:
        self._log.info(message)

    def notify_error(self, message: str, error: Optional[BaseException] = None) -> None:
        if error is not None:
            self._log.error(f"{message}: {error}")
        else:
            self._log.error(message)

    def capture_exception(self, error: BaseException, context: Optional[dict] = None) -> None:
        self._log.error(f"Captured {type(error).__name__}: {error} (context={context or {}})")
