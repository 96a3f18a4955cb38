"""
BrewMirror 数据模型包

包含包模型、清单模型、下载模型和配置模型定义。
"""

from brewmirror.models.package import (
    UNCHECKED,
    PackageKind,
    DependencyKind,
    DownloadStrategy,
    Resource,
    DependencyEdge,
    Package,
    Found,
    Unavailable,
    PackageLookup,
    ResolveOptions,
    ResolutionResult,
    CaskResolution,
)
from brewmirror.models.manifest import PackageEntry, MirrorManifest
from brewmirror.models.fetch import FetchStatus, FetchTask, FetchOutcome, FetchReport
from brewmirror.models.config import CatalogConfig, MirrorConfig

__all__ = [
    # 包模型
    "UNCHECKED",
    "PackageKind",
    "DependencyKind",
    "DownloadStrategy",
    "Resource",
    "DependencyEdge",
    "Package",
    "Found",
    "Unavailable",
    "PackageLookup",
    "ResolveOptions",
    "ResolutionResult",
    "CaskResolution",
    # 清单模型
    "PackageEntry",
    "MirrorManifest",
    # 下载模型
    "FetchStatus",
    "FetchTask",
    "FetchOutcome",
    "FetchReport",
    # 配置模型
    "CatalogConfig",
    "MirrorConfig",
]
