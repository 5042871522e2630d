"""Task ledger - the caregiver's working copy of a visit's tasks during clock-out."""

from typing import Iterable, Iterator

from carevisit.models.visit import CompletionState, Task
from carevisit.utils.errors import UnknownTaskError


class TaskLedger:
    """Mutable, ordered task states for one clock-out session."""
    
    def __init__(self, tasks: Iterable[Task]):
        self._tasks: dict[str, Task] = {t.id: t.model_copy() for t in tasks}
    
    def _require(self, task_id: str) -> Task:
        try:
            return self._tasks[task_id]
        except KeyError:
            raise UnknownTaskError(task_id) from None
    
    def set_completion(self, task_id: str, done: bool) -> Task:
        """Mark a task done (clearing any reason) or not done (keeping it)."""
        task = self._require(task_id)
        if done:
            updated = task.model_copy(update={"completion_state": CompletionState.DONE, "reason": None})
        else:
            updated = task.model_copy(update={"completion_state": CompletionState.NOT_DONE})
        self._tasks[task_id] = updated
        return updated
    
    def set_reason(self, task_id: str, text: str) -> Task:
        """Record why a task was not done. Ignored unless the task is NOT_DONE."""
        task = self._require(task_id)
        if task.completion_state != CompletionState.NOT_DONE:
            return task
        updated = task.model_copy(update={"reason": text})
        self._tasks[task_id] = updated
        return updated
    
    def get(self, task_id: str) -> Task:
        return self._require(task_id)
    
    def unaddressed_task_ids(self) -> list[str]:
        return [t.id for t in self._tasks.values() if not t.is_addressed]
    
    def is_fully_addressed(self) -> bool:
        return not self.unaddressed_task_ids()
    
    @property
    def tasks(self) -> tuple[Task, ...]:
        return tuple(self._tasks.values())
    
    def __iter__(self) -> Iterator[Task]:
        return iter(self.tasks)
    
    def __len__(self) -> int:
        return len(self._tasks)
