"""
主协调器

整合所有服务层组件，实现镜像流程编排：
解析依赖 -> 固定目录修订号 -> 生成计划 -> 分配标识 -> 下载 -> 提交清单。
"""

import asyncio
import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from loguru import logger

from brewmirror.download import FetchEngine, IdentifierAssigner
from brewmirror.exceptions import (
    CatalogError,
    GitError,
    IdentifierError,
    MirrorIntegrityError,
    UnsupportedStrategyError,
)
from brewmirror.logger import setup_logger
from brewmirror.mirror import FetchPlan, MirrorStateManager
from brewmirror.models import (
    FetchOutcome,
    FetchReport,
    FetchStatus,
    FetchTask,
    MirrorConfig,
    MirrorManifest,
    Package,
    PackageKind,
    Resource,
)
from brewmirror.services import (
    DependencyResolver,
    HomebrewAPIClient,
    LocalCatalogProvider,
    PackageMetadataProvider,
    expand_catalog_id,
)
from brewmirror.utils import load_config


@dataclass
class MirrorRunReport:
    """一次镜像运行的结果"""

    resolved: List[str] = field(default_factory=list)
    casks: List[str] = field(default_factory=list)
    unavailable: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    stale: List[str] = field(default_factory=list)
    fetched: List[str] = field(default_factory=list)
    cache_hits: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    unsupported: List[str] = field(default_factory=list)
    incomplete: List[str] = field(default_factory=list)
    pruned: List[str] = field(default_factory=list)
    partial: bool = False
    committed: bool = False
    manifest: Optional[MirrorManifest] = None


class MirrorOrchestrator:
    """BrewMirror 主协调器"""

    def __init__(
        self,
        config: MirrorConfig,
        provider: Optional[PackageMetadataProvider] = None,
        engine: Optional[FetchEngine] = None,
        assigner: Optional[IdentifierAssigner] = None,
    ):
        self.config = config
        self.state = MirrorStateManager(config.mirror_dir)
        self._provider = provider
        self._owned_provider = provider is None
        self._engine = engine
        self._owned_engine = engine is None
        self._assigner = assigner
        self._cancelled = False

    @property
    def provider(self) -> PackageMetadataProvider:
        if self._provider is None:
            catalog = self.config.catalog
            if catalog.source == "local":
                self._provider = LocalCatalogProvider(catalog.path, catalog.bottle_tags)
            else:
                self._provider = HomebrewAPIClient(
                    base_url=catalog.url,
                    bottle_tags=catalog.bottle_tags,
                    timeout=catalog.timeout,
                    max_retries=catalog.max_retries,
                    retry_delay=self.config.retry_delay,
                )
        return self._provider

    @property
    def engine(self) -> FetchEngine:
        if self._engine is None:
            self._engine = FetchEngine(
                max_concurrent=self.config.max_concurrent,
                max_retries=self.config.max_retries,
                retry_delay=self.config.retry_delay,
                politeness_delay=self.config.politeness_delay,
                min_file_size=self.config.min_file_size,
                timeout=self.config.timeout,
            )
        return self._engine

    @property
    def assigner(self) -> IdentifierAssigner:
        if self._assigner is None:
            self._assigner = IdentifierAssigner(self.state.identifier_cache_path)
        return self._assigner

    def cancel(self):
        """取消镜像任务：不再开始新的下载，默认不提交清单"""
        self._cancelled = True
        if self._engine is not None:
            self._engine.cancel()

    async def run(self) -> MirrorRunReport:
        """运行完整的镜像流程"""
        # 配置错误必须在任何网络请求之前抛出
        self.config.validate()
        logger.info(f"[镜像] 开始镜像任务: {self.config.mirror_dir}")

        try:
            return await self._run()
        except Exception as e:
            logger.error(f"[镜像] 任务执行失败: {e}")
            raise
        finally:
            await self.close()

    async def _run(self) -> MirrorRunReport:
        report = MirrorRunReport()
        self.state.ensure_layout()
        prior = self.state.load_manifest()
        urlmap = self.state.load_urlmap()

        packages = await self._resolve(report)
        pins = await self._catalog_pins(prior)

        plan = self.state.plan(packages, prior)
        report.unchanged = list(plan.unchanged)
        report.stale = list(plan.stale)

        tasks, identifiers, preflight = await self._build_tasks(plan)
        if self._cancelled:
            self.engine.cancel()
        fetch_report = await self.engine.run(tasks)
        for outcome in preflight:
            fetch_report.add(outcome)
        self._collect(report, fetch_report)

        if fetch_report.integrity_failures:
            self.assigner.save()
            failures = [
                {"url": o.url, "reason": o.reason} for o in fetch_report.integrity_failures
            ]
            raise MirrorIntegrityError(
                f"{len(failures)} 个资源校验失败，清单未提交",
                context={"failures": failures},
            )

        if fetch_report.cancelled or self._cancelled:
            report.partial = True
            if not self.config.commit_partial:
                logger.warning("[镜像] 任务已取消，清单未提交")
                self.assigner.save()
                return report

        result = self.state.commit(
            plan,
            fetch_report,
            identifiers,
            prior,
            urlmap,
            pins,
            fresh_pins=self.config.fresh_pins,
        )
        report.committed = True
        report.manifest = result.manifest
        report.incomplete = list(result.incomplete)

        if self.config.prune and plan.stale:
            self.state.prune(result.manifest, urlmap, plan.stale_entries)
            report.pruned = list(plan.stale)

        self.assigner.save()
        self._log_summary(report)
        return report

    async def _resolve(self, report: MirrorRunReport) -> List[Package]:
        """解析 formula 与 cask 的依赖闭包"""
        options = self.config.resolve_options()
        resolver = DependencyResolver(self.provider)

        formulas = await resolver.resolve_closure(self.config.formulas, options)
        casks = await resolver.resolve_casks(self.config.casks, options)

        packages: Dict[Tuple[PackageKind, str], Package] = {
            (PackageKind.FORMULA, name): package
            for name, package in formulas.packages.items()
        }
        packages.update(casks.packages)

        report.resolved = sorted(set(formulas.names) | set(casks.formulas))
        report.casks = list(casks.casks)
        report.unavailable = sorted(set(formulas.unavailable) | set(casks.unavailable))
        return list(packages.values())

    async def _catalog_pins(self, prior: Optional[MirrorManifest]) -> Dict[str, str]:
        """读取目录修订号；沿用旧清单中已有的固定值"""
        carried = {} if prior is None or self.config.fresh_pins else prior.catalog_pins
        pins: Dict[str, str] = {}
        for catalog_id in self.config.catalog.ids:
            catalog_id = expand_catalog_id(catalog_id)
            if catalog_id in carried:
                logger.debug(f"[目录] {catalog_id} 沿用固定修订号 {carried[catalog_id]}")
                continue
            try:
                pins[catalog_id] = await self.provider.get_catalog_revision(catalog_id)
            except CatalogError as e:
                logger.warning(f"[目录] 无法读取 {catalog_id} 的修订号: {e}")
                continue
            logger.info(f"[目录] {catalog_id} -> {pins[catalog_id]}")
        return pins

    def _identify(self, resource: Resource) -> Tuple[Resource, str]:
        """分配标识；版本控制资源的符号引用替换为具体提交"""
        if resource.is_vcs:
            revision = self.assigner.concrete_revision(resource)
            if revision != resource.revision:
                resource = dataclasses.replace(resource, revision=revision)
        return resource, self.assigner.identify(resource)

    async def _build_tasks(
        self, plan: FetchPlan
    ) -> Tuple[List[FetchTask], Dict[Resource, Optional[str]], List[FetchOutcome]]:
        """
        为计划中的每个资源生成下载任务

        Returns:
            (下载任务, 资源 -> 标识, 无需下载就已确定的结果)
        """
        tasks: List[FetchTask] = []
        identifiers: Dict[Resource, Optional[str]] = {}
        preflight: List[FetchOutcome] = []

        for resource in plan.to_fetch:
            try:
                concrete, identifier = await asyncio.to_thread(self._identify, resource)
            except UnsupportedStrategyError as e:
                identifiers[resource] = None
                logger.warning(f"[跳过] {e}: {resource.url}")
                preflight.append(
                    FetchOutcome(
                        FetchStatus.UNSUPPORTED,
                        FetchTask(resource, "", self.state.store_dir),
                        reason=e.message,
                    )
                )
                continue
            except (IdentifierError, GitError) as e:
                identifiers[resource] = None
                logger.error(f"[错误] 无法为 '{resource.url}' 分配标识: {e}")
                preflight.append(
                    FetchOutcome(
                        FetchStatus.FAILED,
                        FetchTask(resource, "", self.state.store_dir),
                        reason=str(e),
                    )
                )
                continue

            identifiers[resource] = identifier
            filename = self.assigner.filename_for(concrete, identifier)
            tasks.append(FetchTask(concrete, identifier, self.state.store_path(filename)))

        return tasks, identifiers, preflight

    @staticmethod
    def _collect(report: MirrorRunReport, fetch_report: FetchReport):
        report.fetched = [o.url for o in fetch_report.downloaded]
        report.cache_hits = [o.url for o in fetch_report.cache_hits]
        report.failed = [o.url for o in fetch_report.failed]
        report.unsupported = [o.url for o in fetch_report.unsupported]

    @staticmethod
    def _log_summary(report: MirrorRunReport):
        logger.success(
            f"[完成] 解析 {len(report.resolved)} 个 formula、{len(report.casks)} 个 cask，"
            f"下载 {len(report.fetched)}，缓存命中 {len(report.cache_hits)}，"
            f"未变化 {len(report.unchanged)}"
        )
        if report.unavailable:
            logger.warning(f"[完成] 找不到的包: {', '.join(report.unavailable)}")
        if report.failed:
            logger.warning(f"[完成] 下载失败 {len(report.failed)} 个资源:")
            for url in report.failed:
                logger.warning(f"  - {url}")
        if report.unsupported:
            logger.info(f"[完成] 跳过 {len(report.unsupported)} 个不支持的资源")
        if report.pruned:
            logger.info(f"[完成] 已清理: {', '.join(report.pruned)}")

    async def close(self):
        """关闭自己创建的提供者与下载引擎"""
        if self._owned_provider and self._provider is not None:
            await self._provider.close()
        if self._owned_engine and self._engine is not None:
            await self._engine.close()


async def run_mirror(config_path: Union[str, Path]) -> MirrorRunReport:
    """读取配置文件并运行镜像任务"""
    config = MirrorConfig.from_dict(load_config(config_path))
    setup_logger(log_file=config.log_file)
    orchestrator = MirrorOrchestrator(config)
    return await orchestrator.run()
