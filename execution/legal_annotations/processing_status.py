"""
Document Processing Status Polling

Uploaded documents move through pending -> processing -> completed/failed on
the server. Clients learn about it by polling at a short interval; between
polls a simulated estimate keeps the progress indicator moving. The estimate
never reaches 100 until the server reports completion.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .cancellation import CancellationToken
from .config import AnnotationSettings

logger = logging.getLogger(__name__)

PROCESSING_STATUSES = ("pending", "processing", "completed", "failed")
TERMINAL_STATUSES = frozenset({"completed", "failed"})

# Simulated progress stops short of completion
SIMULATED_PROGRESS_CAP = 95.0

DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_POLL_TIMEOUT = 300.0
MAX_CONSECUTIVE_ERRORS = 3


class ProcessingTimeout(Exception):
    """Raised when a document does not reach a terminal status in time."""

    def __init__(self, document_id: str, last_status: Optional["ProcessingStatus"] = None):
        super().__init__(f"Processing of document {document_id} did not finish in time")
        self.document_id = document_id
        self.last_status = last_status


@dataclass
class ProcessingStatus:
    """Server-reported processing state of one document."""
    document_id: str
    status: str
    progress: float = 0.0
    message: Optional[str] = None
    error: Optional[str] = None

    def __post_init__(self):
        if self.status not in PROCESSING_STATUSES:
            raise ValueError(f"Unknown processing status: {self.status!r}")
        self.progress = min(max(float(self.progress), 0.0), 100.0)
        if self.status == "completed":
            self.progress = 100.0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        return {
            "document_id": self.document_id,
            "status": self.status,
            "progress": self.progress,
            "message": self.message,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ProcessingStatus":
        return cls(
            document_id=str(data["document_id"]),
            status=data.get("status") or data.get("processing_status") or "pending",
            progress=data.get("progress") or 0.0,
            message=data.get("message"),
            error=data.get("error") or data.get("error_message"),
        )


class SimulatedProgress:
    """
    Local progress estimate between polls.

    Each tick closes a fixed fraction of the gap to the cap, so the bar slows
    down as it approaches it. Server updates only ever move it forward.
    """

    def __init__(self, rate: float = 0.1, cap: float = SIMULATED_PROGRESS_CAP):
        if not 0 < rate <= 1:
            raise ValueError(f"rate must be in (0, 1], got {rate}")
        self.rate = rate
        self.cap = cap
        self.value = 0.0

    def tick(self) -> float:
        if self.value < self.cap:
            self.value = min(self.value + (self.cap - self.value) * self.rate, self.cap)
        return self.value

    def observe(self, status: ProcessingStatus) -> float:
        if status.status == "completed":
            self.value = 100.0
        else:
            self.value = max(self.value, min(status.progress, self.cap))
        return self.value


async def poll_processing_status(
    fetch: Callable[[str], dict],
    document_id: str,
    interval: Optional[float] = None,
    timeout: Optional[float] = None,
    on_update: Optional[Callable[[ProcessingStatus], None]] = None,
    token: Optional[CancellationToken] = None,
    estimator: Optional[SimulatedProgress] = None,
    settings: Optional[AnnotationSettings] = None,
) -> ProcessingStatus:
    """
    Poll until the document reaches a terminal status.

    Args:
        fetch: Blocking callable returning the status record of a document
        document_id: Document to watch
        interval: Seconds between polls (settings.poll_interval by default)
        timeout: Seconds before giving up (settings.poll_timeout by default)
        on_update: Called with every observed status; progress is the
            simulated estimate while the document is still running
        token: Cancels the polling loop

    Returns:
        The terminal ProcessingStatus

    Raises:
        ProcessingTimeout: If no terminal status was seen within ``timeout``
        RequestCancelled: If ``token`` was cancelled
    """
    if interval is None:
        interval = settings.poll_interval if settings else DEFAULT_POLL_INTERVAL
    if timeout is None:
        timeout = settings.poll_timeout if settings else DEFAULT_POLL_TIMEOUT
    estimator = estimator or SimulatedProgress()
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    last_status = None
    errors = 0

    while True:
        if token is not None:
            token.raise_if_cancelled()

        try:
            record = await asyncio.to_thread(fetch, document_id)
            status = ProcessingStatus.from_dict({"document_id": document_id, **record})
            errors = 0
        except Exception as e:
            errors += 1
            logger.warning(f"Status poll for {document_id} failed ({errors}/{MAX_CONSECUTIVE_ERRORS}): {e}")
            if errors >= MAX_CONSECUTIVE_ERRORS:
                raise
            status = None

        if token is not None:
            token.raise_if_cancelled()

        if status is not None:
            last_status = status
            progress = estimator.observe(status)
            if status.is_terminal:
                logger.info(f"Document {document_id} finished processing: {status.status}")
                if on_update:
                    on_update(status)
                return status
            if on_update:
                on_update(ProcessingStatus(
                    document_id=document_id,
                    status=status.status,
                    progress=progress,
                    message=status.message,
                ))

        if loop.time() >= deadline:
            raise ProcessingTimeout(document_id, last_status)

        await asyncio.sleep(interval)
        estimator.tick()
