"""
URL 映射

远程 URL -> 内容寻址存储中的本地文件名。
查找时容忍查询参数、片段、末尾斜杠与 URL 编码的差异。
"""

from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import unquote

from loguru import logger

from brewmirror.exceptions import ManifestError, URLMapConflictError


def clean_url(url: str) -> str:
    """去掉查询参数与片段"""
    return url.split("?", 1)[0].split("#", 1)[0]


def url_variants(url: str) -> List[str]:
    """
    生成用于匹配的 URL 变体，按优先级排列：
    原始 URL、去掉查询、去掉片段、两者都去掉、末尾斜杠变化、URL 解码
    """
    variants = [url]
    has_query = "?" in url
    has_fragment = "#" in url

    if has_query:
        variants.append(url.split("?", 1)[0])
    if has_fragment:
        variants.append(url.split("#", 1)[0])
    if has_query or has_fragment:
        variants.append(clean_url(url))

    if url.endswith("/"):
        variants.append(url.rstrip("/"))
    elif not (has_query or has_fragment):
        variants.append(url + "/")

    decoded = unquote(url)
    if decoded != url:
        variants.append(decoded)

    return list(dict.fromkeys(variants))


def equivalent(url1: str, url2: str) -> bool:
    """忽略查询与片段后是否相同"""
    return clean_url(url1) == clean_url(url2)


class URLMap:
    """URL 映射表"""

    def __init__(self, entries: Optional[Dict[str, str]] = None):
        self._entries: Dict[str, str] = dict(entries or {})
        # 本次运行新增的条目，同一 URL 不允许映射到不同内容
        self._added: Dict[str, str] = {}

    def lookup(self, url: str) -> Optional[str]:
        for variant in url_variants(url):
            filename = self._entries.get(variant)
            if filename:
                return filename
        return None

    def add(self, url: str, filename: str) -> None:
        """
        添加映射

        Raises:
            URLMapConflictError: 本次运行中同一 URL 已映射到不同文件
        """
        previous = self._added.get(url)
        if previous is not None and previous != filename:
            raise URLMapConflictError(
                f"URL 在同一次运行中对应不同内容: {url}",
                context={"url": url, "existing": previous, "new": filename},
            )
        existing = self._entries.get(url)
        if existing is not None and existing != filename:
            logger.info(f"[映射] 更新 {url}: {existing} -> {filename}")
        self._entries[url] = filename
        self._added[url] = filename

    def merge(self, updates: Iterable[tuple]) -> None:
        for url, filename in updates:
            self.add(url, filename)

    def remove_filenames(self, filenames: Iterable[str]) -> List[str]:
        """删除指向给定文件的条目，返回被删除的 URL"""
        targets = set(filenames)
        removed = [url for url, name in self._entries.items() if name in targets]
        for url in removed:
            del self._entries[url]
            self._added.pop(url, None)
        return sorted(removed)

    def filenames(self) -> set:
        return set(self._entries.values())

    def __contains__(self, url: str) -> bool:
        return url in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __getitem__(self, url: str) -> str:
        return self._entries[url]

    def to_dict(self) -> Dict[str, str]:
        return dict(sorted(self._entries.items()))

    @classmethod
    def from_dict(cls, data: Any) -> "URLMap":
        if not isinstance(data, dict):
            raise ManifestError("URL 映射必须是对象")
        for url, filename in data.items():
            if not isinstance(filename, str) or not filename:
                raise ManifestError("URL 映射条目无效", context={"url": url})
        return cls({str(k): v for k, v in data.items()})
