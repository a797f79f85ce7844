from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .wait_task import WaitTask


class TaskManager:
    """Registry of live wait tasks for one realm.

    Bulk operations iterate over a snapshot, so tasks may deregister
    themselves while being terminated or rerun.
    """

    def __init__(self) -> None:
        self._tasks: dict[WaitTask, None] = {}

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task: object) -> bool:
        return task in self._tasks

    @property
    def tasks(self) -> list[WaitTask]:
        return list(self._tasks)

    def add(self, task: WaitTask) -> None:
        self._tasks[task] = None

    def delete(self, task: WaitTask) -> None:
        self._tasks.pop(task, None)

    def terminate_all(self, error: BaseException | None = None) -> None:
        for task in list(self._tasks):
            task.terminate(error)
        self._tasks.clear()

    def rerun_all(self) -> None:
        for task in list(self._tasks):
            task.rerun()
