"""
包数据模型

定义包、依赖边、资源以及依赖解析相关的数据类。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple, Union

UNCHECKED = ":unchecked"


class PackageKind(Enum):
    """包类型"""

    FORMULA = "formula"
    CASK = "cask"


class DependencyKind(Enum):
    """依赖类型"""

    RUNTIME = "runtime"
    BUILD = "build"
    OPTIONAL = "optional"
    RECOMMENDED = "recommended"


class DownloadStrategy(Enum):
    """已实现的下载策略"""

    HTTP = "content-addressed-http"
    GIT = "version-control"


SUPPORTED_STRATEGIES = {strategy.value for strategy in DownloadStrategy}


@dataclass(frozen=True)
class Resource:
    """
    远程资源

    checksum 为 None 表示 :unchecked（无预先计算的校验和）。
    strategy 保留原始标签，未知标签的资源会被当作不支持的资源跳过。
    """

    url: str
    checksum: Optional[str] = None
    strategy: str = DownloadStrategy.HTTP.value
    name: str = "stable"
    revision: Optional[str] = None
    ref: Optional[str] = None

    def __post_init__(self):
        if self.checksum == UNCHECKED or self.checksum == "":
            object.__setattr__(self, "checksum", None)
        elif self.checksum is not None:
            object.__setattr__(self, "checksum", self.checksum.lower())

    @property
    def is_supported(self) -> bool:
        return self.strategy in SUPPORTED_STRATEGIES

    @property
    def is_vcs(self) -> bool:
        return self.strategy == DownloadStrategy.GIT.value


@dataclass(frozen=True)
class DependencyEdge:
    """依赖边"""

    name: str
    kind: DependencyKind = DependencyKind.RUNTIME
    target_kind: PackageKind = PackageKind.FORMULA


@dataclass(frozen=True)
class Package:
    """
    包信息。

    由元数据提供者按需创建，在一次解析过程中不可变。
    """

    name: str
    version: str
    kind: PackageKind = PackageKind.FORMULA
    dependencies: Tuple[DependencyEdge, ...] = ()
    resources: Tuple[Resource, ...] = ()
    catalog: Optional[str] = None

    def dependencies_of(self, kinds: Set[DependencyKind]) -> List[DependencyEdge]:
        """按依赖类型过滤依赖边，保持原有顺序并去重"""
        seen = set()
        edges = []
        for edge in self.dependencies:
            key = (edge.target_kind, edge.name)
            if edge.kind in kinds and key not in seen:
                seen.add(key)
                edges.append(edge)
        return edges


@dataclass(frozen=True)
class Found:
    """查询成功"""

    package: Package


@dataclass(frozen=True)
class Unavailable:
    """目录中找不到该包"""

    name: str
    reason: str = "package unavailable"


PackageLookup = Union[Found, Unavailable]


@dataclass(frozen=True)
class ResolveOptions:
    """依赖解析选项，运行时依赖总是包含在内"""

    include_build: bool = False
    include_optional: bool = False
    include_recommended: bool = False
    recursive: bool = True

    def edge_kinds(self) -> Set[DependencyKind]:
        kinds = {DependencyKind.RUNTIME}
        if self.include_build:
            kinds.add(DependencyKind.BUILD)
        if self.include_optional:
            kinds.add(DependencyKind.OPTIONAL)
        if self.include_recommended:
            kinds.add(DependencyKind.RECOMMENDED)
        return kinds


@dataclass
class ResolutionResult:
    """依赖解析结果"""

    names: List[str] = field(default_factory=list)
    packages: Dict[str, Package] = field(default_factory=dict)
    unavailable: List[str] = field(default_factory=list)
    edges: Dict[str, List[str]] = field(default_factory=dict)


@dataclass
class CaskResolution:
    """cask 解析结果，cask 可能依赖 formula"""

    casks: List[str] = field(default_factory=list)
    formulas: List[str] = field(default_factory=list)
    packages: Dict[Tuple[PackageKind, str], Package] = field(default_factory=dict)
    unavailable: List[str] = field(default_factory=list)
