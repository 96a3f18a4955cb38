"""
依赖处理服务

广度优先计算依赖闭包：依赖去重、循环依赖保护、按依赖类型过滤、
找不到的包只警告不报错。visited 集合归属于单次解析调用，不共享全局状态。
"""

from collections import deque
from typing import Dict, Iterable, List, Optional, Set, Tuple

from loguru import logger

from brewmirror.exceptions import CatalogError
from brewmirror.logger import is_debug
from brewmirror.models import (
    CaskResolution,
    Package,
    PackageKind,
    PackageLookup,
    ResolutionResult,
    ResolveOptions,
    Unavailable,
)
from brewmirror.services.provider import PackageMetadataProvider

Node = Tuple[PackageKind, str]

TREE_DEPTH = 2


def _plural(count: int, word: str) -> str:
    return f"{count} 个 {word}"


def dependency_tree(
    roots: Iterable[str],
    edges: Dict[str, List[str]],
    resolved: Iterable[str],
) -> List[str]:
    """
    生成依赖树文本（只展开前两层，避免输出过长）

    使用解析时记录的依赖边，不会再次查询提供者。
    """
    resolved = set(resolved)
    lines: List[str] = []

    def walk(name: str, depth: int):
        prefix = "  " * depth
        marker = "└──" if depth == 0 else "├──"
        suffix = "" if name in resolved else " (not resolved)"
        lines.append(f"{prefix}{marker} {name}{suffix}")
        if depth >= TREE_DEPTH or name not in resolved:
            return
        for dep in edges.get(name, []):
            walk(dep, depth + 1)

    for root in roots:
        walk(root, 0)
    return lines


class DependencyResolver:
    """依赖解析器"""

    def __init__(self, provider: PackageMetadataProvider):
        self.provider = provider

    async def resolve(
        self,
        root_names: Optional[Iterable[str]],
        options: Optional[ResolveOptions] = None,
    ) -> List[str]:
        """
        解析 formula 依赖闭包

        Args:
            root_names: 初始包名，None 或空列表返回空结果
            options: 解析选项

        Returns:
            排序、去重后的包名列表
        """
        result = await self.resolve_closure(root_names, options)
        return result.names

    async def resolve_closure(
        self,
        root_names: Optional[Iterable[str]],
        options: Optional[ResolveOptions] = None,
        kind: PackageKind = PackageKind.FORMULA,
    ) -> ResolutionResult:
        """解析依赖闭包，返回包名、包对象与找不到的包"""
        roots = list(dict.fromkeys(root_names or []))
        if not roots:
            return ResolutionResult()
        options = options or ResolveOptions()

        logger.info(f"[解析] 正在解析 {_plural(len(roots), kind.value)} 的依赖...")
        found, unavailable, edges = await self._walk([(kind, name) for name in roots], options)

        result = ResolutionResult(
            names=sorted(name for _, name in found),
            packages={name: package for (_, name), package in found.items()},
            unavailable=sorted(name for _, name in unavailable),
            edges={name: [dep for _, dep in targets] for (_, name), targets in edges.items()},
        )
        logger.info(f"[解析] 共解析 {_plural(len(result.names), kind.value)}（包含依赖）")

        if is_debug():
            logger.debug("[解析] 依赖树:")
            for line in dependency_tree(roots, result.edges, result.names):
                logger.debug(line)

        return result

    async def resolve_casks(
        self,
        tokens: Optional[Iterable[str]],
        options: Optional[ResolveOptions] = None,
    ) -> CaskResolution:
        """
        解析 cask 依赖

        cask 可能依赖 formula，结果分为 casks 与 formulas 两个列表，
        两个列表各自去重并排序。
        """
        roots = list(dict.fromkeys(tokens or []))
        if not roots:
            return CaskResolution()
        options = options or ResolveOptions()

        logger.info(f"[解析] 正在解析 {_plural(len(roots), 'cask')} 的依赖...")
        found, unavailable, _ = await self._walk(
            [(PackageKind.CASK, token) for token in roots], options
        )

        result = CaskResolution(
            casks=sorted(name for kind, name in found if kind == PackageKind.CASK),
            formulas=sorted(name for kind, name in found if kind == PackageKind.FORMULA),
            packages=dict(found),
            unavailable=sorted({name for _, name in unavailable}),
        )
        if result.formulas:
            logger.info(
                f"[解析] 共解析 {_plural(len(result.casks), 'cask')}，"
                f"{_plural(len(result.formulas), 'formula')} 依赖"
            )
        else:
            logger.info(f"[解析] 共解析 {_plural(len(result.casks), 'cask')}（无 formula 依赖）")
        return result

    async def _lookup(self, node: Node) -> PackageLookup:
        kind, name = node
        try:
            return await self.provider.get_package(name, kind)
        except CatalogError as e:
            return Unavailable(name, str(e))

    async def _walk(
        self, roots: List[Node], options: ResolveOptions
    ) -> Tuple[Dict[Node, Package], Dict[Node, str], Dict[Node, List[Node]]]:
        """广度优先遍历；同一节点不会展开两次，因此有环的图也会终止"""
        kinds = options.edge_kinds()
        visited: Set[Node] = set()
        queue = deque(roots)
        found: Dict[Node, Package] = {}
        unavailable: Dict[Node, str] = {}
        edges: Dict[Node, List[Node]] = {}

        while queue:
            node = queue.popleft()
            if node in visited:
                continue
            visited.add(node)

            lookup = await self._lookup(node)
            if isinstance(lookup, Unavailable):
                kind, name = node
                unavailable[node] = lookup.reason
                logger.warning(f"[警告] 找不到 {kind.value}: {name} ({lookup.reason})")
                continue

            package = lookup.package
            found[node] = package
            if not options.recursive:
                continue

            targets = []
            for edge in package.dependencies_of(kinds):
                target = (edge.target_kind, edge.name)
                targets.append(target)
                if target not in visited:
                    queue.append(target)
            edges[node] = targets

        return found, unavailable, edges
