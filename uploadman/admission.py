from __future__ import annotations

from collections import deque
from typing import Iterator

from uploadman.models import UploadTask

READY_STATUSES = frozenset({"pending", "paused"})


class AdmissionQueue:
    """Tasks waiting for an upload slot, in admission order.

    Fresh tasks go to the tail. Retries, paused tasks and user retries go to
    the head so they overtake work that has never been attempted. A paused
    task is as ready as a pending one.
    """

    def __init__(self) -> None:
        self._items: deque[UploadTask] = deque()

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[UploadTask]:
        return iter(tuple(self._items))

    def __contains__(self, task_id: object) -> bool:
        return any(task.task_id == task_id for task in self._items)

    def append(self, task: UploadTask) -> None:
        self._items.append(task)

    def push_front(self, task: UploadTask) -> None:
        self._items.appendleft(task)

    def get(self, task_id: str) -> UploadTask | None:
        for task in self._items:
            if task.task_id == task_id:
                return task
        return None

    def remove(self, task_id: str) -> UploadTask | None:
        task = self.get(task_id)
        if task is not None:
            self._items.remove(task)
        return task

    def has_ready(self) -> bool:
        return any(task.status in READY_STATUSES for task in self._items)

    def pop_ready(self) -> UploadTask | None:
        for task in self._items:
            if task.status in READY_STATUSES:
                self._items.remove(task)
                return task
        return None
