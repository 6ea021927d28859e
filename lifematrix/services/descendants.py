"""Descendant resolution over the parent-pointer task hierarchy."""

from collections import defaultdict
from typing import Iterable, Mapping

from lifematrix.models.task import Task


class ChildIndex:
    """Parent id -> child ids, built once per collection snapshot."""

    def __init__(self, tasks: Iterable[Task]):
        self._children: dict[str, list[str]] = defaultdict(list)
        for task in tasks:
            if task.parent_id is not None:
                self._children[task.parent_id].append(task.id)

    def children_of(self, task_id: str) -> list[str]:
        return list(self._children.get(task_id, ()))

    def descendants_of(self, task_id: str) -> set[str]:
        """
        Transitive closure of children below `task_id`, excluding itself.

        The visited set bounds the walk by collection size and stops on
        cyclic or self-referential parent chains.
        """
        visited: set[str] = {task_id}
        stack = list(self._children.get(task_id, ()))
        while stack:
            current = stack.pop()
            if current in visited:
                continue
            visited.add(current)
            stack.extend(self._children.get(current, ()))
        visited.discard(task_id)
        return visited


def descendants_of(task_id: str, all_tasks: Iterable[Task] | Mapping[str, Task]) -> set[str]:
    """Full set of descendant ids of `task_id` (order-free, self excluded)."""
    tasks = all_tasks.values() if isinstance(all_tasks, Mapping) else all_tasks
    return ChildIndex(tasks).descendants_of(task_id)


def subtree_ids(task_id: str, index: ChildIndex) -> set[str]:
    """The task itself plus its descendant closure."""
    return {task_id} | index.descendants_of(task_id)
