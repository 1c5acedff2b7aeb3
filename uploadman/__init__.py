"""Upload queue package."""

from uploadman.admission import AdmissionQueue
from uploadman.config import UploadSettings
from uploadman.errors import (
    ConfigurationError,
    SourceUnavailableError,
    TransferError,
    UnknownTaskError,
    UploadError,
)
from uploadman.events import EventBus, Subscription
from uploadman.manager import UploadManager
from uploadman.models import (
    CompletionEvent,
    ProgressEvent,
    QueueSnapshot,
    TaskSnapshot,
    UploadResult,
    UploadTask,
)
from uploadman.reachability import ReachabilityProbe, ReachabilitySignal
from uploadman.retry import RetryPolicy
from uploadman.transfer import StaticCredentials, ZiplineTransferClient

__all__ = [
    "AdmissionQueue",
    "CompletionEvent",
    "ConfigurationError",
    "EventBus",
    "ProgressEvent",
    "QueueSnapshot",
    "ReachabilityProbe",
    "ReachabilitySignal",
    "RetryPolicy",
    "SourceUnavailableError",
    "StaticCredentials",
    "Subscription",
    "TaskSnapshot",
    "TransferError",
    "UnknownTaskError",
    "UploadError",
    "UploadManager",
    "UploadResult",
    "UploadSettings",
    "UploadTask",
    "ZiplineTransferClient",
]
