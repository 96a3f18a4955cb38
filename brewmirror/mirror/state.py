"""
镜像状态管理

把解析结果与上一次的清单比较，生成下载计划；
下载完成后在内存中构建新清单与 URL 映射，再原子写入磁盘。
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Union

from loguru import logger

from brewmirror.exceptions import ManifestError
from brewmirror.mirror.urlmap import URLMap
from brewmirror.models import (
    FetchReport,
    MirrorManifest,
    Package,
    PackageEntry,
    Resource,
)
from brewmirror.utils import atomic_write_json

MANIFEST_FILE = "manifest.json"
URLMAP_FILE = "urlmap.json"
IDENTIFIER_CACHE_FILE = "identifiers.json"
STORE_DIR = "store"


@dataclass
class FetchPlan:
    """下载计划"""

    packages: List[Package] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    stale: List[str] = field(default_factory=list)
    carried: List[PackageEntry] = field(default_factory=list)
    stale_entries: List[PackageEntry] = field(default_factory=list)

    @property
    def to_fetch(self) -> List[Resource]:
        """需要下载的资源（去重，保持顺序）"""
        resources = []
        for package in self.packages:
            for resource in package.resources:
                if resource not in resources:
                    resources.append(resource)
        return resources


@dataclass
class CommitResult:
    manifest: MirrorManifest
    committed: List[str] = field(default_factory=list)
    incomplete: List[str] = field(default_factory=list)


def merge_pins(
    prior: Mapping[str, str], current: Mapping[str, str], fresh: bool = False
) -> Dict[str, str]:
    """增量运行沿用旧的目录修订号，除非显式要求重新固定"""
    if fresh:
        return dict(current)
    pins = dict(current)
    pins.update(prior)
    return pins


class MirrorStateManager:
    """镜像状态管理器"""

    def __init__(self, mirror_dir: Union[str, Path]):
        self.root = Path(mirror_dir)
        self.store_dir = self.root / STORE_DIR
        self.manifest_path = self.root / MANIFEST_FILE
        self.urlmap_path = self.root / URLMAP_FILE
        self.identifier_cache_path = self.root / IDENTIFIER_CACHE_FILE

    def ensure_layout(self):
        self.store_dir.mkdir(parents=True, exist_ok=True)

    def store_path(self, filename: str) -> Path:
        return self.store_dir / filename

    def _read_json(self, path: Path):
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ManifestError(
                f"文件不是有效的 JSON: {path}", context={"error": str(e)}
            ) from e

    def load_manifest(self) -> Optional[MirrorManifest]:
        """读取清单，不存在时返回 None（表示没有历史状态）"""
        if not self.manifest_path.exists():
            return None
        return MirrorManifest.from_dict(self._read_json(self.manifest_path))

    def load_urlmap(self) -> URLMap:
        if not self.urlmap_path.exists():
            return URLMap()
        return URLMap.from_dict(self._read_json(self.urlmap_path))

    def plan(
        self, packages: Iterable[Package], prior: Optional[MirrorManifest]
    ) -> FetchPlan:
        """
        生成下载计划

        - 名称、类型、版本与旧清单完全一致：unchanged，完全跳过
        - 新包或版本变化：加入下载
        - 旧清单中有、本次解析没有：stale，只报告不删除
        """
        prior_index = prior.index() if prior else {}
        plan = FetchPlan()
        current_keys = set()

        for package in sorted(packages, key=lambda p: (p.kind.value, p.name)):
            key = (package.kind, package.name)
            if key in current_keys:
                continue
            current_keys.add(key)

            entry = prior_index.get(key)
            if entry is not None and entry.matches(package):
                plan.unchanged.append(package.name)
                plan.carried.append(entry)
                continue

            if entry is not None:
                logger.info(f"[更新] {package.name}: {entry.version} -> {package.version}")
            plan.packages.append(package)

        for key, entry in sorted(prior_index.items(), key=lambda item: (item[0][0].value, item[0][1])):
            if key not in current_keys:
                plan.stale.append(entry.name)
                plan.stale_entries.append(entry)

        logger.info(
            f"[计划] 需要下载 {len(plan.packages)} 个包 ({len(plan.to_fetch)} 个资源)，"
            f"未变化 {len(plan.unchanged)} 个，过期 {len(plan.stale)} 个"
        )
        if plan.stale:
            logger.info(f"[计划] 过期条目（未删除）: {', '.join(plan.stale)}")
        return plan

    def commit(
        self,
        plan: FetchPlan,
        report: FetchReport,
        identifiers: Mapping[Resource, Optional[str]],
        prior: Optional[MirrorManifest],
        urlmap: URLMap,
        catalog_pins: Mapping[str, str],
        fresh_pins: bool = False,
    ) -> CommitResult:
        """
        提交新清单与 URL 映射

        只有所有受支持资源都下载成功（或缓存命中）的包才写入清单；
        不受支持的资源被跳过，不影响所属包的其他资源。
        """
        outcomes = {o.task.identifier: o for o in report.outcomes}
        prior_index = prior.index() if prior else {}
        result = CommitResult(manifest=MirrorManifest())
        entries = list(plan.carried) + list(plan.stale_entries)

        for package in plan.packages:
            resource_ids = []
            complete = True
            for resource in package.resources:
                if not resource.is_supported:
                    continue
                identifier = identifiers.get(resource)
                outcome = outcomes.get(identifier) if identifier else None
                if outcome is None or not outcome.ok:
                    complete = False
                    break
                if identifier not in resource_ids:
                    resource_ids.append(identifier)

            if complete:
                entries.append(
                    PackageEntry(package.name, package.version, package.kind, resource_ids)
                )
                result.committed.append(package.name)
                continue

            result.incomplete.append(package.name)
            # 新版本没有下载完整时保留旧条目，旧文件仍在存储中
            previous = prior_index.get((package.kind, package.name))
            if previous is not None:
                entries.append(previous)

        manifest = MirrorManifest(
            catalog_pins=merge_pins(prior.catalog_pins if prior else {}, catalog_pins, fresh_pins),
            packages=entries,
        )
        urlmap.merge(report.url_updates())
        self.write(manifest, urlmap)
        result.manifest = manifest

        logger.success(
            f"[提交] 清单已写入: {len(manifest.packages)} 个包，{len(urlmap)} 个 URL 映射"
        )
        if result.incomplete:
            logger.warning(f"[提交] 以下包未完整下载，未写入新版本: {', '.join(result.incomplete)}")
        return result

    def write(self, manifest: MirrorManifest, urlmap: URLMap) -> None:
        """原子写入；清单最后写入，作为提交完成的标记"""
        atomic_write_json(self.urlmap_path, urlmap.to_dict())
        atomic_write_json(self.manifest_path, manifest.to_dict())

    def prune(
        self, manifest: MirrorManifest, urlmap: URLMap, entries: Iterable[PackageEntry]
    ) -> List[Path]:
        """
        显式清理：删除指定包的条目，以及不再被任何条目引用的存储文件

        条目按 (类型, 名称) 匹配，同名的 formula 与 cask 互不影响。

        Returns:
            被删除的文件路径
        """
        targets = {entry.key for entry in entries}
        if not targets:
            return []

        kept = [e for e in manifest.packages if e.key not in targets]
        dropped = [e for e in manifest.packages if e.key in targets]
        referenced = set()
        for entry in kept:
            referenced.update(entry.resource_ids)
        orphaned = set()
        for entry in dropped:
            orphaned.update(i for i in entry.resource_ids if i not in referenced)

        removed: List[Path] = []
        if self.store_dir.is_dir():
            for path in sorted(self.store_dir.iterdir()):
                if path.is_file() and path.name.split(".", 1)[0] in orphaned:
                    path.unlink()
                    removed.append(path)
                    logger.info(f"[清理] 删除 {path.name}")

        urlmap.remove_filenames(p.name for p in removed)
        manifest.packages = kept
        self.write(manifest, urlmap)
        logger.info(f"[清理] 移除 {len(dropped)} 个条目，删除 {len(removed)} 个文件")
        return removed
