"""
下载任务与结果模型
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

from brewmirror.models.package import Resource


class FetchStatus(Enum):
    """下载结果状态"""

    DOWNLOADED = "downloaded"
    CACHE_HIT = "cache_hit"
    FAILED = "failed"
    UNSUPPORTED = "unsupported"
    INTEGRITY = "integrity"
    CANCELLED = "cancelled"


@dataclass
class FetchTask:
    """单个资源的下载任务，执行完即丢弃"""

    resource: Resource
    identifier: str
    destination: Path
    attempts: int = 0

    @property
    def filename(self) -> str:
        return self.destination.name


@dataclass
class FetchOutcome:
    """下载结果"""

    status: FetchStatus
    task: FetchTask
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status in (FetchStatus.DOWNLOADED, FetchStatus.CACHE_HIT)

    @property
    def filename(self) -> str:
        return self.task.filename

    @property
    def url(self) -> str:
        return self.task.resource.url


@dataclass
class FetchReport:
    """一次下载批次的汇总，仅由聚合协程写入"""

    outcomes: List[FetchOutcome] = field(default_factory=list)
    cancelled: bool = False

    def add(self, outcome: FetchOutcome) -> None:
        self.outcomes.append(outcome)

    def _with(self, status: FetchStatus) -> List[FetchOutcome]:
        return [o for o in self.outcomes if o.status == status]

    @property
    def downloaded(self) -> List[FetchOutcome]:
        return self._with(FetchStatus.DOWNLOADED)

    @property
    def cache_hits(self) -> List[FetchOutcome]:
        return self._with(FetchStatus.CACHE_HIT)

    @property
    def failed(self) -> List[FetchOutcome]:
        return self._with(FetchStatus.FAILED)

    @property
    def unsupported(self) -> List[FetchOutcome]:
        return self._with(FetchStatus.UNSUPPORTED)

    @property
    def integrity_failures(self) -> List[FetchOutcome]:
        return self._with(FetchStatus.INTEGRITY)

    @property
    def not_started(self) -> List[FetchOutcome]:
        return self._with(FetchStatus.CANCELLED)

    def url_updates(self) -> List[Tuple[str, str]]:
        """成功的结果产生的 (url, 本地文件名) 对"""
        return [(o.url, o.filename) for o in self.outcomes if o.ok]
