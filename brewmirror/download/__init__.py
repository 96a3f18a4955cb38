"""
BrewMirror 下载层

包含下载引擎、任务队列、文件校验、资源标识分配与 git 策略。
"""

from brewmirror.download.manager import FetchEngine, DownloadStats
from brewmirror.download.queue import FetchQueue, Priority
from brewmirror.download.verifier import FileVerifier
from brewmirror.download.identifier import IdentifierAssigner, canonical_url

__all__ = [
    "FetchEngine",
    "DownloadStats",
    "FetchQueue",
    "Priority",
    "FileVerifier",
    "IdentifierAssigner",
    "canonical_url",
]
