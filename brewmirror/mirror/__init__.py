"""
BrewMirror 镜像状态层

包含清单增量计划、原子提交、显式清理与 URL 映射。
"""

from brewmirror.mirror.state import (
    CommitResult,
    FetchPlan,
    MirrorStateManager,
    merge_pins,
)
from brewmirror.mirror.urlmap import URLMap, clean_url, equivalent, url_variants

__all__ = [
    "CommitResult",
    "FetchPlan",
    "MirrorStateManager",
    "merge_pins",
    "URLMap",
    "clean_url",
    "equivalent",
    "url_variants",
]
