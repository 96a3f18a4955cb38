"""
资源标识分配器

为任意资源生成稳定的内容标识：
- 带校验和的 HTTP 资源直接使用校验和（内容寻址，天然去重）；
- 版本控制资源使用 sha256(规范化 URL + "@" + 具体提交)，
  并缓存在 (url, revision) 为键的侧表中，跨运行复用同一标识。
"""

import hashlib
import json
import threading
from pathlib import Path
from typing import Callable, Dict, Optional, Union
from urllib.parse import urlsplit, urlunsplit

from loguru import logger

from brewmirror.download.git import is_commit, resolve_revision
from brewmirror.exceptions import IdentifierError, ManifestError, UnsupportedStrategyError
from brewmirror.models import Resource
from brewmirror.utils import atomic_write_json, detect_extension

RevisionResolver = Callable[[str, str], str]

VCS_EXTENSION = ".tar.gz"


def canonical_url(url: str) -> str:
    """规范化 URL：小写协议与主机，去掉 git+ 前缀、片段、末尾斜杠与 .git"""
    if url.startswith("git+"):
        url = url[4:]
    parts = urlsplit(url)
    path = parts.path.rstrip("/")
    if path.endswith(".git"):
        path = path[:-4]
    return urlunsplit(
        (parts.scheme.lower(), parts.netloc.lower(), path, parts.query, "")
    )


def _digest(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class IdentifierAssigner:
    """资源标识分配器，标识缓存可并发读写"""

    def __init__(
        self,
        cache_path: Optional[Union[str, Path]] = None,
        revision_resolver: RevisionResolver = resolve_revision,
    ):
        self.cache_path = Path(cache_path) if cache_path else None
        self._resolve_revision = revision_resolver
        self._lock = threading.Lock()
        self._cache: Dict[str, str] = {}
        self._dirty = False
        if self.cache_path is not None:
            self._load()

    def _load(self):
        if not self.cache_path.exists():
            return
        try:
            data = json.loads(self.cache_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ManifestError(
                f"标识缓存不是有效的 JSON: {self.cache_path}", context={"error": str(e)}
            ) from e
        if not isinstance(data, dict):
            raise ManifestError(f"标识缓存格式无效: {self.cache_path}")
        self._cache = {str(k): str(v) for k, v in data.items()}
        logger.debug(f"[标识] 已加载 {len(self._cache)} 个缓存标识")

    def identify(self, resource: Resource) -> str:
        """
        获取资源的稳定标识

        Raises:
            UnsupportedStrategyError: 下载策略未实现
            IdentifierError: 版本控制资源无法得到具体提交
        """
        if not resource.is_supported:
            raise UnsupportedStrategyError(
                f"不支持的下载策略: {resource.strategy}",
                context={"url": resource.url, "strategy": resource.strategy},
            )

        if not resource.is_vcs:
            if resource.checksum:
                return resource.checksum
            return _digest(canonical_url(resource.url))

        revision = self.concrete_revision(resource)
        key = f"{canonical_url(resource.url)}@{revision}"
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                return cached
            identifier = _digest(key)
            self._cache[key] = identifier
            self._dirty = True
        logger.debug(f"[标识] {resource.url}@{revision[:12]} -> {identifier[:12]}")
        return identifier

    def concrete_revision(self, resource: Resource) -> str:
        """版本控制资源的具体提交，符号引用会被解析"""
        if is_commit(resource.revision):
            return resource.revision
        symbolic = resource.revision or resource.ref
        if not symbolic:
            raise IdentifierError(
                "版本控制资源缺少 revision 或 ref", context={"url": resource.url}
            )
        try:
            revision = self._resolve_revision(resource.url, symbolic)
        except Exception as e:
            raise IdentifierError(
                f"无法解析版本控制引用: {symbolic}",
                context={"url": resource.url, "ref": symbolic, "error": str(e)},
            ) from e
        if not is_commit(revision):
            raise IdentifierError(
                "解析结果不是具体提交",
                context={"url": resource.url, "ref": symbolic, "revision": revision},
            )
        return revision

    @staticmethod
    def filename_for(resource: Resource, identifier: str) -> str:
        """内容寻址存储中的文件名"""
        if resource.is_vcs:
            return identifier + VCS_EXTENSION
        return identifier + detect_extension(resource.url)

    def save(self) -> None:
        """持久化标识缓存（原子写入）"""
        if self.cache_path is None:
            return
        with self._lock:
            if not self._dirty and self.cache_path.exists():
                return
            snapshot = dict(self._cache)
            self._dirty = False
        atomic_write_json(self.cache_path, snapshot)

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)
