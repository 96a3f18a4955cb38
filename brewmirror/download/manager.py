"""
下载引擎

负责单个资源的下载（缓存检查、重试退避、不完整文件清理、校验），
以及有界并发的批量下载、礼貌延迟与取消控制。
"""

import asyncio
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional
from urllib.parse import unquote, urlsplit

import aiofiles
import aiohttp
from loguru import logger

from brewmirror.download.git import archive_checkout, is_commit
from brewmirror.download.queue import FetchQueue, Priority
from brewmirror.download.verifier import FileVerifier
from brewmirror.exceptions import (
    DownloadError,
    DownloadNetworkError,
    DownloadPermanentError,
    IntegrityError,
)
from brewmirror.models import FetchOutcome, FetchReport, FetchStatus, FetchTask
from brewmirror.utils import format_size

# 这些 4xx 状态码是暂时性的，其余 4xx 直接放弃
RETRYABLE_CLIENT_STATUS = {408, 429}

PART_SUFFIX = ".part"

GitFetcher = Callable[[str, str, Path], Path]


@dataclass
class DownloadStats:
    """下载统计"""

    total: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    cache_hits: int = 0
    bytes_downloaded: int = 0


class FetchEngine:
    """下载引擎"""

    def __init__(
        self,
        max_concurrent: int = 4,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        politeness_delay: float = 0.0,
        min_file_size: int = 1,
        timeout: float = 300.0,
        session: Optional[aiohttp.ClientSession] = None,
        git_fetcher: GitFetcher = archive_checkout,
        progress_callback: Optional[Callable[[str, float], None]] = None,
    ):
        self.max_concurrent = max(1, max_concurrent)
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.politeness_delay = politeness_delay
        self.min_file_size = max(1, min_file_size)
        self.timeout = timeout
        self.verifier = FileVerifier()
        self.stats = DownloadStats()
        self._session = session
        self._owned_session = session is None
        self._git_fetcher = git_fetcher
        self._progress_callback = progress_callback
        self._cancelled = False
        self._throttle_lock = asyncio.Lock()
        self._last_start: Optional[float] = None

    @property
    def session(self) -> aiohttp.ClientSession:
        """获取或创建 aiohttp session"""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._session

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self):
        """停止派发新任务，进行中的任务继续完成"""
        if not self._cancelled:
            logger.warning("[取消] 收到取消信号，不再开始新的下载")
        self._cancelled = True

    async def fetch(self, task: FetchTask) -> FetchOutcome:
        """
        下载单个资源

        Returns:
            FetchOutcome（downloaded / cache_hit / failed / unsupported）

        Raises:
            IntegrityError: 下载完成后校验和不匹配
        """
        resource = task.resource
        dest = str(task.destination)
        part = dest + PART_SUFFIX

        if not resource.is_supported:
            self.stats.skipped += 1
            logger.warning(f"[跳过] 不支持的下载策略 '{resource.strategy}': {resource.url}")
            return FetchOutcome(
                FetchStatus.UNSUPPORTED,
                task,
                reason=f"unsupported strategy: {resource.strategy}",
            )

        os.makedirs(os.path.dirname(dest) or ".", exist_ok=True)

        # 先清理上次留下的不完整文件，避免被当作缓存命中
        self.verifier.cleanup_partial(dest, self.min_file_size)
        if os.path.isfile(dest):
            checksum = None if resource.is_vcs else resource.checksum
            if await self.verifier.is_valid(dest, checksum, self.min_file_size):
                self.stats.cache_hits += 1
                logger.info(f"[跳过] '{task.filename}' 已存在且校验通过")
                return FetchOutcome(FetchStatus.CACHE_HIT, task)
            logger.warning(f"[警告] '{task.filename}' 已存在，但校验和不匹配，将重新下载")
            os.remove(dest)

        logger.info(f"[开始] 下载: {resource.url}")
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_retries + 1):
            task.attempts = attempt
            try:
                await self._download(task, part)
                await self._verify(task, part)
                os.replace(part, dest)
                self.stats.completed += 1
                logger.success(f"[完成] '{task.filename}' 下载完成")
                return FetchOutcome(FetchStatus.DOWNLOADED, task)

            except IntegrityError:
                self.stats.failed += 1
                raise

            except DownloadPermanentError as e:
                last_error = e
                self._discard(part)
                logger.error(f"[错误] 下载 '{resource.url}' 遇到不可重试的错误: {e}")
                break

            except (DownloadError, aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                last_error = e
                self._discard(part)
                if attempt < self.max_retries:
                    delay = self.retry_delay * (2 ** (attempt - 1))
                    logger.warning(
                        f"[重试] 下载 '{task.filename}' 失败 (第 {attempt} 次): {e}. "
                        f"{delay:.1f}s 后重试..."
                    )
                    await asyncio.sleep(delay)

        self._discard(part)
        self.verifier.cleanup_partial(dest, self.min_file_size)
        self.stats.failed += 1
        logger.error(f"[错误] 下载 '{resource.url}' 最终失败 ({task.attempts} 次尝试): {last_error}")
        return FetchOutcome(FetchStatus.FAILED, task, reason=str(last_error))

    async def _download(self, task: FetchTask, part: str):
        resource = task.resource
        if resource.is_vcs:
            if not is_commit(resource.revision):
                raise DownloadPermanentError(
                    "版本控制资源需要具体提交",
                    context={"url": resource.url, "revision": resource.revision},
                )
            await asyncio.to_thread(
                self._git_fetcher, resource.url, resource.revision, Path(part)
            )
            return

        if resource.url.startswith("file://"):
            await self._copy_local_file(resource.url, part)
            return

        await self._download_http(task, part)

    async def _download_http(self, task: FetchTask, part: str):
        url = task.resource.url
        async with self.session.get(url) as response:
            status = response.status
            if status >= 500 or status in RETRYABLE_CLIENT_STATUS:
                raise DownloadNetworkError(
                    f"HTTP {status}", context={"url": url, "status": status}
                )
            if status >= 400:
                raise DownloadPermanentError(
                    f"HTTP {status}", context={"url": url, "status": status}
                )

            total_size = int(response.headers.get("Content-Length", 0) or 0)
            if task.attempts == 1 and total_size:
                logger.info(f"[信息] 文件大小: {format_size(total_size)}")

            async with aiofiles.open(part, "wb") as f:
                downloaded = 0
                last_percent = 0.0

                async for chunk in response.content.iter_chunked(65536):
                    await f.write(chunk)
                    downloaded += len(chunk)
                    self.stats.bytes_downloaded += len(chunk)

                    if total_size > 0:
                        percent = (downloaded / total_size) * 100
                        if percent - last_percent >= 10:
                            if self._progress_callback:
                                self._progress_callback(task.filename, percent)
                            logger.debug(f"[进度] {task.filename}: {percent:.1f}%")
                            last_percent = percent

        if FileVerifier.get_size(part) < self.min_file_size:
            raise DownloadNetworkError(
                "下载内容为空或不完整", context={"url": url, "size": FileVerifier.get_size(part)}
            )

    async def _copy_local_file(self, url: str, part: str):
        """复制本地文件"""
        src_path = unquote(urlsplit(url).path)
        if not os.path.isfile(src_path):
            raise DownloadPermanentError(
                "本地文件不存在", context={"url": url, "path": src_path}
            )
        logger.info(f"[复制] 本地文件: {os.path.basename(src_path)}")
        await asyncio.to_thread(shutil.copyfile, src_path, part)

    async def _verify(self, task: FetchTask, part: str):
        checksum = task.resource.checksum
        if task.resource.is_vcs or not checksum:
            return
        if await self.verifier.verify_sha256(part, checksum):
            return
        actual = await self.verifier.calc_sha256(part)
        self._discard(part)
        raise IntegrityError(
            f"SHA256 校验失败: {task.resource.url}",
            context={
                "url": task.resource.url,
                "expected": checksum,
                "actual": actual,
            },
        )

    @staticmethod
    def _discard(path: str):
        if os.path.exists(path):
            os.remove(path)

    async def _throttle(self):
        """保证相邻两个任务的开始时间至少间隔 politeness_delay"""
        if self.politeness_delay <= 0:
            return
        async with self._throttle_lock:
            loop = asyncio.get_running_loop()
            if self._last_start is not None:
                wait = self._last_start + self.politeness_delay - loop.time()
                if wait > 0:
                    await asyncio.sleep(wait)
            self._last_start = loop.time()

    async def _worker(self, queue: FetchQueue, results: asyncio.Queue):
        """下载工作协程"""
        while not self._cancelled:
            try:
                task = queue.get_nowait()
            except asyncio.QueueEmpty:
                return

            try:
                await self._throttle()
                outcome = await self.fetch(task)
            except IntegrityError as e:
                logger.error(f"[校验] {e}，中止整个镜像任务")
                outcome = FetchOutcome(FetchStatus.INTEGRITY, task, reason=str(e))
                self.cancel()
            except (DownloadError, OSError) as e:
                logger.error(f"[错误] 处理 '{task.resource.url}' 时出错: {e}")
                outcome = FetchOutcome(FetchStatus.FAILED, task, reason=str(e))
            finally:
                queue.task_done()

            await results.put(outcome)

    async def _aggregate(
        self,
        results: asyncio.Queue,
        report: FetchReport,
        duplicates: List[FetchTask],
    ):
        """唯一写入 report 的协程"""
        while True:
            outcome = await results.get()
            if outcome is None:
                break
            report.add(outcome)

        # 相同内容标识的任务共享第一次下载的结果，但各自保留 URL
        by_identifier = {o.task.identifier: o for o in report.outcomes}
        for task in duplicates:
            primary = by_identifier.get(task.identifier)
            if primary is None:
                report.add(FetchOutcome(FetchStatus.CANCELLED, task, reason="not started"))
            else:
                report.add(FetchOutcome(primary.status, task, reason=primary.reason))

    async def run(self, tasks: Iterable[FetchTask]) -> FetchReport:
        """
        批量下载

        Returns:
            FetchReport，取消时未开始的任务标记为 cancelled
        """
        queue = FetchQueue()
        duplicates: List[FetchTask] = []
        for task in tasks:
            priority = Priority.LOW if task.resource.is_vcs else Priority.NORMAL
            if queue.put(task, priority):
                self.stats.total += 1
            else:
                logger.debug(f"[队列] '{task.filename}' 已在队列中，复用同一内容")
                duplicates.append(task)

        report = FetchReport()
        results: asyncio.Queue = asyncio.Queue()
        aggregator = asyncio.create_task(self._aggregate(results, report, duplicates))

        worker_count = min(self.max_concurrent, max(queue.qsize(), 1))
        logger.info(f"[启动] 下载 {queue.qsize()} 个资源，最大并发数: {worker_count}")
        workers = [
            asyncio.create_task(self._worker(queue, results), name=f"fetcher-{i}")
            for i in range(worker_count)
        ]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            self.cancel()
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            aggregator.cancel()
            raise

        for task in queue.drain():
            await results.put(FetchOutcome(FetchStatus.CANCELLED, task, reason="run cancelled"))
        await results.put(None)
        await aggregator

        report.cancelled = self._cancelled
        logger.info(
            f"[统计] 下载 {len(report.downloaded)}，缓存命中 {len(report.cache_hits)}，"
            f"失败 {len(report.failed)}，不支持 {len(report.unsupported)}"
        )
        return report

    def get_stats(self) -> DownloadStats:
        """获取下载统计"""
        return self.stats

    async def close(self):
        """关闭 session"""
        if self._owned_session and self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
