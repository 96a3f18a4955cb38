"""
下载任务队列

实现优先级队列、按内容标识去重、取消时排空队列。
"""

import asyncio
import itertools
from dataclasses import dataclass, field
from enum import Enum
from typing import List

from brewmirror.models import FetchTask


class Priority(Enum):
    """下载优先级"""

    NORMAL = 0
    LOW = 1


@dataclass(order=True)
class _QueueItem:
    priority: int
    sequence: int
    task: FetchTask = field(compare=False)


class FetchQueue:
    """下载队列，同一内容标识只会入队一次"""

    def __init__(self):
        self._queue: asyncio.PriorityQueue = asyncio.PriorityQueue()
        self._identifiers: set[str] = set()
        self._counter = itertools.count()
        self._total_queued = 0

    def put(self, task: FetchTask, priority: Priority = Priority.NORMAL) -> bool:
        """
        添加任务到队列

        Returns:
            True 如果任务是新添加的，False 如果是重复任务
        """
        if task.identifier in self._identifiers:
            return False

        self._identifiers.add(task.identifier)
        self._queue.put_nowait(_QueueItem(priority.value, next(self._counter), task))
        self._total_queued += 1
        return True

    def get_nowait(self) -> FetchTask:
        """获取下一个任务，队列为空时抛出 asyncio.QueueEmpty"""
        return self._queue.get_nowait().task

    def task_done(self):
        self._queue.task_done()

    def qsize(self) -> int:
        return self._queue.qsize()

    def drain(self) -> List[FetchTask]:
        """取出所有尚未开始的任务"""
        tasks = []
        while not self._queue.empty():
            try:
                tasks.append(self._queue.get_nowait().task)
            except asyncio.QueueEmpty:
                break
            self._queue.task_done()
        return tasks

    def get_stats(self) -> dict:
        return {
            "pending": self.qsize(),
            "total_queued": self._total_queued,
        }
