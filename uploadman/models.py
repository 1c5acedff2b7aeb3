from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Literal

UploadStatus = Literal[
    "pending",
    "uploading",
    "paused",
    "completed",
    "failed",
]
TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})

CancelReason = Literal["paused", "cancelled", "shutdown"]


@dataclass(slots=True, frozen=True)
class UploadResult:
    server_id: str | None
    url: str | None
    name: str
    size: int


@dataclass(slots=True)
class CancelHandle:
    """Cancellation token for one attempt (or one backoff wait)."""

    event: asyncio.Event = field(default_factory=asyncio.Event)
    reason: CancelReason | None = None
    task: asyncio.Task | None = None

    @property
    def cancelled(self) -> bool:
        return self.event.is_set()

    def bind(self, task: asyncio.Task) -> None:
        self.task = task

    def cancel(self, reason: CancelReason) -> None:
        if self.event.is_set():
            return
        self.reason = reason
        self.event.set()
        if self.task is not None and not self.task.done():
            self.task.cancel()


@dataclass(slots=True)
class UploadTask:
    task_id: str
    path: Path
    filename: str
    created_at: float
    is_temporary: bool = False
    status: UploadStatus = "pending"
    progress: float = 0.0
    error: str | None = None
    retry_count: int = 0
    attempt: int = 0
    cancel_handle: CancelHandle | None = None
    completed_at: float | None = None
    result: UploadResult | None = None
    was_paused: bool = False
    backing_off: bool = False
    cleaned_up: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def snapshot(self) -> TaskSnapshot:
        return TaskSnapshot(
            task_id=self.task_id,
            filename=self.filename,
            path=str(self.path),
            status=self.status,
            progress=self.progress,
            error=self.error,
            retry_count=self.retry_count,
            created_at=self.created_at,
            completed_at=self.completed_at,
            result=self.result,
            is_temporary=self.is_temporary,
            was_paused=self.was_paused,
        )


@dataclass(slots=True, frozen=True)
class TaskSnapshot:
    task_id: str
    filename: str
    path: str
    status: UploadStatus
    progress: float
    error: str | None
    retry_count: int
    created_at: float
    completed_at: float | None
    result: UploadResult | None
    is_temporary: bool
    was_paused: bool


@dataclass(slots=True, frozen=True)
class QueueSnapshot:
    """Ordered view of every non-dismissed task: queued, then active, then terminal."""

    tasks: tuple[TaskSnapshot, ...]
    taken_at: float = field(default_factory=time.time)

    def __len__(self) -> int:
        return len(self.tasks)

    def __iter__(self) -> Iterator[TaskSnapshot]:
        return iter(self.tasks)

    def get(self, task_id: str) -> TaskSnapshot | None:
        for task in self.tasks:
            if task.task_id == task_id:
                return task
        return None

    def by_status(self, status: UploadStatus) -> list[TaskSnapshot]:
        return [task for task in self.tasks if task.status == status]


@dataclass(slots=True, frozen=True)
class CompletionEvent:
    task_id: str
    filename: str
    success: bool
    retry_count: int
    finished_at: float
    result: UploadResult | None = None
    error: str | None = None


@dataclass(slots=True, frozen=True)
class ProgressEvent:
    task_id: str
    attempt: int
    progress: float
    sent_bytes: int
    total_bytes: int
