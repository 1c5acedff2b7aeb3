from __future__ import annotations

import asyncio
import logging
import time
import uuid
from pathlib import Path
from typing import Callable

from uploadman.admission import AdmissionQueue
from uploadman.cleanup import remove_temporary_file
from uploadman.config import UploadSettings
from uploadman.errors import TransferError, UnknownTaskError, UploadError
from uploadman.events import EventBus, Subscription
from uploadman.models import (
    CancelHandle,
    CompletionEvent,
    ProgressEvent,
    QueueSnapshot,
    TaskSnapshot,
    UploadResult,
    UploadTask,
)
from uploadman.reachability import ReachabilitySignal
from uploadman.retry import RetryPolicy
from uploadman.transfer import TransferClient

log = logging.getLogger(__name__)


def _new_task_id() -> str:
    return str(uuid.uuid4())


class UploadManager:
    """Queues uploads and runs a bounded number of them at a time.

    Every change to the admission queue, the active map and the terminal list
    happens in await-free sections on the event loop. Executors never touch
    those collections themselves; they hand their outcome to one of the
    ``_apply_*`` methods.
    """

    def __init__(
        self,
        transfer: TransferClient,
        *,
        reachability: ReachabilitySignal | None = None,
        bus: EventBus | None = None,
        settings: UploadSettings | None = None,
        retry_policy: RetryPolicy | None = None,
        id_factory: Callable[[], str] | None = None,
        auto_process: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        settings = settings or UploadSettings()
        self._transfer = transfer
        self._reachability = reachability or ReachabilitySignal()
        self._bus = bus or EventBus()
        self._max_concurrent = max(1, settings.max_concurrent_uploads)
        self._poll_interval_s = settings.poll_interval_s
        self._retry_policy = retry_policy or RetryPolicy(
            max_retries=settings.max_retries,
            backoff_base_s=settings.backoff_base_s,
        )
        self._id_factory = id_factory or _new_task_id
        self._auto_process = auto_process
        self._clock = clock
        self._queue = AdmissionQueue()
        self._active: dict[str, UploadTask] = {}
        self._terminal: list[UploadTask] = []
        self._workers: dict[str, asyncio.Task] = {}
        self._wakeup = asyncio.Event()
        self._processing = False
        self._loop_task: asyncio.Task | None = None
        self._closed = False
        self._detach_reachability = self._reachability.add_listener(
            self._on_reachability_changed
        )

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def reachability(self) -> ReachabilitySignal:
        return self._reachability

    @property
    def max_concurrent_uploads(self) -> int:
        return self._max_concurrent

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    async def start(self) -> None:
        self._ensure_open()
        self._auto_process = True
        self._kick()

    async def shutdown(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._detach_reachability()
        workers = list(self._workers.values())
        for task in list(self._active.values()):
            if task.cancel_handle is not None:
                task.cancel_handle.cancel("shutdown")
        loop_task = self._loop_task
        if loop_task is not None:
            loop_task.cancel()
            workers.append(loop_task)
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)
        self._bus.close()
        log.info("Upload manager stopped")

    def is_processing(self) -> bool:
        return self._processing

    def active_count(self) -> int:
        return len(self._active)

    def uploading_count(self) -> int:
        return sum(1 for task in self._active.values() if task.status == "uploading")

    def queued_count(self) -> int:
        return len(self._queue)

    def snapshot(self) -> QueueSnapshot:
        tasks = [*self._queue, *self._active.values(), *self._terminal]
        return QueueSnapshot(
            tasks=tuple(task.snapshot() for task in tasks), taken_at=self._clock()
        )

    def get_task(self, task_id: str) -> TaskSnapshot | None:
        task = self._find(task_id)
        return task.snapshot() if task is not None else None

    def watch_progress(self, task_id: str) -> Subscription:
        return self._bus.subscribe_progress(task_id)

    # caller operations

    async def enqueue(
        self,
        path: str | Path,
        *,
        filename: str | None = None,
        is_temporary: bool = False,
    ) -> str:
        self._ensure_open()
        source = Path(path)
        task_id = self._id_factory()
        if self._find(task_id) is not None:
            raise ValueError(f"Duplicate upload task id: {task_id}")
        task = UploadTask(
            task_id=task_id,
            path=source,
            filename=filename or source.name,
            created_at=self._clock(),
            is_temporary=is_temporary,
        )
        self._queue.append(task)
        log.info("Queued upload %s (%s)", task.task_id, task.filename)
        self._notify()
        self._kick()
        return task.task_id

    async def pause(self, task_id: str) -> bool:
        task = self._require(task_id)
        handle = task.cancel_handle
        if task.status == "uploading":
            self._active.pop(task_id, None)
            task.cancel_handle = None
            task.status = "paused"
            task.was_paused = True
            self._queue.push_front(task)
            log.info("Paused upload %s", task_id)
        elif task.backing_off:
            # Pausing during backoff drops the timer and makes the task ready now.
            self._active.pop(task_id, None)
            task.cancel_handle = None
            task.backing_off = False
            task.status = "pending"
            task.was_paused = True
            self._queue.push_front(task)
            log.info("Paused upload %s during backoff; retry timer discarded", task_id)
        else:
            return False
        if handle is not None:
            handle.cancel("paused")
        self._notify()
        self._kick()
        return True

    async def resume(self, task_id: str) -> bool:
        task = self._require(task_id)
        if task.status != "paused":
            return False
        task.status = "pending"
        log.info("Resumed upload %s", task_id)
        self._notify()
        self._kick()
        return True

    async def cancel(self, task_id: str) -> bool:
        task = self._require(task_id)
        if task.is_terminal:
            return False
        worker = None
        if self._queue.remove(task_id) is None:
            self._active.pop(task_id, None)
            worker = self._workers.get(task_id)
            handle = task.cancel_handle
            task.cancel_handle = None
            task.backing_off = False
            if handle is not None:
                handle.cancel("cancelled")
        log.info("Cancelled upload %s", task_id)
        self._notify()
        self._kick()
        if worker is not None and worker is not asyncio.current_task():
            await asyncio.wait({worker})
        await self._cleanup(task)
        return True

    async def retry(self, task_id: str) -> bool:
        task = self._require(task_id)
        if task.status != "failed":
            return False
        self._terminal.remove(task)
        task.status = "pending"
        task.retry_count = 0
        task.error = None
        task.progress = 0.0
        task.completed_at = None
        task.result = None
        self._queue.push_front(task)
        log.info("Retrying failed upload %s on request", task_id)
        self._notify()
        self._kick()
        return True

    async def dismiss(self, task_id: str) -> bool:
        task = self._require(task_id)
        if not task.is_terminal:
            return False
        self._terminal.remove(task)
        self._notify()
        return True

    async def clear_finished(self) -> int:
        cleared = len(self._terminal)
        if cleared:
            self._terminal.clear()
            self._notify()
        return cleared

    # scheduler loop

    def _has_work(self) -> bool:
        return self._queue.has_ready() or bool(self._active)

    def _kick(self) -> None:
        if not self._auto_process or self._closed:
            return
        self._admit_ready()
        self._wakeup.set()
        if self._processing or not self._has_work():
            return
        if not self._reachability.is_reachable:
            return
        self._processing = True
        self._loop_task = asyncio.create_task(self._process_queue())

    async def _process_queue(self) -> None:
        try:
            while self._has_work():
                if not self._reachability.is_reachable:
                    log.info("Network unreachable; upload admission suspended")
                    break
                self._admit_ready()
                if not self._has_work():
                    break
                self._wakeup.clear()
                try:
                    await asyncio.wait_for(
                        self._wakeup.wait(), timeout=self._poll_interval_s
                    )
                except asyncio.TimeoutError:
                    pass
        finally:
            self._processing = False
            self._loop_task = None

    def _admit_ready(self) -> int:
        if not self._reachability.is_reachable:
            return 0
        admitted = 0
        while self.uploading_count() < self._max_concurrent:
            task = self._queue.pop_ready()
            if task is None:
                break
            self._start_attempt(task)
            admitted += 1
        if admitted:
            self._notify()
        return admitted

    def _on_reachability_changed(self, reachable: bool) -> None:
        if reachable and self._has_work():
            log.info("Network restored; resuming upload admission")
            self._kick()

    # task executor

    def _start_attempt(self, task: UploadTask) -> None:
        task.status = "uploading"
        task.progress = 0.0
        task.backing_off = False
        task.attempt += 1
        handle = CancelHandle()
        task.cancel_handle = handle
        self._active[task.task_id] = task
        worker = asyncio.create_task(
            self._run_attempt(task, handle), name=f"upload-{task.task_id}"
        )
        handle.bind(worker)
        self._workers[task.task_id] = worker
        log.info(
            "Started upload %s (%s), attempt %d", task.task_id, task.filename, task.attempt
        )

    async def _run_attempt(self, task: UploadTask, handle: CancelHandle) -> None:
        attempt = task.attempt

        def _on_progress(sent: int, total: int) -> None:
            self._record_progress(task, handle, attempt, sent, total)

        result: UploadResult | None = None
        failure: Exception | None = None
        try:
            try:
                result = await self._transfer.upload(task.path, task.filename, _on_progress)
            except asyncio.CancelledError:
                if not handle.cancelled:
                    raise
            except Exception as exc:
                failure = exc
            else:
                if result is None:
                    failure = TransferError("Transfer client returned no result")
            if handle.cancelled:
                log.info("Upload %s stopped: %s", task.task_id, handle.reason)
            elif failure is not None:
                self._apply_failure(task, failure)
            elif result is not None:
                self._apply_success(task, result)
        finally:
            self._forget_worker(task.task_id)
        if task.is_terminal:
            await self._cleanup(task)

    def _record_progress(
        self,
        task: UploadTask,
        handle: CancelHandle,
        attempt: int,
        sent: int,
        total: int,
    ) -> None:
        if handle.cancelled or task.cancel_handle is not handle or total <= 0:
            return
        fraction = min(1.0, max(0.0, sent / total))
        if fraction <= task.progress:
            return
        task.progress = fraction
        self._bus.publish_progress(
            ProgressEvent(
                task_id=task.task_id,
                attempt=attempt,
                progress=fraction,
                sent_bytes=sent,
                total_bytes=total,
            )
        )
        self._notify()

    def _apply_success(self, task: UploadTask, result: UploadResult) -> None:
        self._active.pop(task.task_id, None)
        task.cancel_handle = None
        task.status = "completed"
        task.progress = 1.0
        task.error = None
        task.result = result
        task.completed_at = self._clock()
        self._terminal.append(task)
        log.info("Upload completed %s: %s", task.task_id, result.url)
        self._publish_completion(task)
        self._notify()
        self._kick()

    def _apply_failure(self, task: UploadTask, exc: Exception) -> None:
        message = str(exc) or repr(exc)
        if not self._retry_policy.is_retryable(exc):
            log.warning("Upload %s cannot be retried: %s", task.task_id, message)
            self._fail(task, message)
            return
        if not isinstance(exc, UploadError):
            log.error(
                "Unexpected error from transfer client for %s", task.task_id, exc_info=exc
            )
        task.retry_count += 1
        if not self._retry_policy.should_retry(task.retry_count):
            self._fail(task, message)
            return
        delay = self._retry_policy.delay_for(task.retry_count)
        task.status = "pending"
        task.progress = 0.0
        task.backing_off = True
        handle = CancelHandle()
        task.cancel_handle = handle
        worker = asyncio.create_task(
            self._wait_backoff(task, handle, delay), name=f"upload-backoff-{task.task_id}"
        )
        handle.bind(worker)
        self._workers[task.task_id] = worker
        log.info(
            "Upload %s failed (%s); retry %d/%d in %.1fs",
            task.task_id,
            message,
            task.retry_count,
            self._retry_policy.max_retries,
            delay,
        )
        self._notify()
        self._kick()

    def _fail(self, task: UploadTask, message: str) -> None:
        self._active.pop(task.task_id, None)
        task.cancel_handle = None
        task.backing_off = False
        task.status = "failed"
        task.error = message
        task.completed_at = self._clock()
        self._terminal.append(task)
        log.warning(
            "Upload %s failed after %d retries: %s", task.task_id, task.retry_count, message
        )
        self._publish_completion(task)
        self._notify()
        self._kick()

    async def _wait_backoff(self, task: UploadTask, handle: CancelHandle, delay: float) -> None:
        try:
            try:
                await asyncio.sleep(delay)
            except asyncio.CancelledError:
                if not handle.cancelled:
                    raise
                return
        finally:
            self._forget_worker(task.task_id)
        if handle.cancelled or self._active.get(task.task_id) is not task:
            return
        self._active.pop(task.task_id)
        task.cancel_handle = None
        task.backing_off = False
        self._queue.push_front(task)
        self._notify()
        self._kick()

    def _forget_worker(self, task_id: str) -> None:
        if self._workers.get(task_id) is asyncio.current_task():
            self._workers.pop(task_id, None)

    # helpers

    def _publish_completion(self, task: UploadTask) -> None:
        self._bus.publish_completion(
            CompletionEvent(
                task_id=task.task_id,
                filename=task.filename,
                success=task.status == "completed",
                retry_count=task.retry_count,
                finished_at=task.completed_at or self._clock(),
                result=task.result,
                error=task.error,
            )
        )

    def _notify(self) -> None:
        self._bus.publish_snapshot(self.snapshot())

    async def _cleanup(self, task: UploadTask) -> None:
        if not task.is_temporary or task.cleaned_up:
            return
        task.cleaned_up = True
        await remove_temporary_file(task.path)

    def _find(self, task_id: str) -> UploadTask | None:
        task = self._active.get(task_id)
        if task is not None:
            return task
        task = self._queue.get(task_id)
        if task is not None:
            return task
        for task in self._terminal:
            if task.task_id == task_id:
                return task
        return None

    def _require(self, task_id: str) -> UploadTask:
        task = self._find(task_id)
        if task is None:
            raise UnknownTaskError(task_id)
        return task

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("Upload manager has been shut down.")
