from __future__ import annotations


class UploadError(RuntimeError):
    pass


class TransferError(UploadError):
    """A transient transfer failure: transport error, timeout or non-2xx reply."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class ConfigurationError(UploadError):
    """The upload cannot succeed no matter how often it is retried."""


class SourceUnavailableError(ConfigurationError):
    pass


class UnknownTaskError(UploadError, KeyError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Unknown upload task: {task_id}")
        self.task_id = task_id

    def __str__(self) -> str:
        return str(self.args[0])
