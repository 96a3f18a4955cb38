"""
Homebrew JSON API 客户端

通过 HTTP 查询 formula / cask 元数据，暂时性错误由客户端自行重试。
"""

import asyncio
import hashlib
from typing import Iterable, Optional

import aiohttp
from loguru import logger

from brewmirror.exceptions import CatalogError, CatalogNotFoundError
from brewmirror.models import Found, PackageKind, PackageLookup, Unavailable
from brewmirror.models.config import DEFAULT_API_URL
from brewmirror.services.catalog_parser import parse_cask, parse_formula
from brewmirror.services.provider import PackageMetadataProvider, expand_catalog_id

CATALOG_INDEXES = {
    "homebrew/core": "formula.json",
    "homebrew/cask": "cask.json",
}

KIND_ENDPOINTS = {
    PackageKind.FORMULA: "formula",
    PackageKind.CASK: "cask",
}


class HomebrewAPIClient(PackageMetadataProvider):
    """Homebrew JSON API 客户端"""

    def __init__(
        self,
        base_url: str = DEFAULT_API_URL,
        session: Optional[aiohttp.ClientSession] = None,
        bottle_tags: Iterable[str] = (),
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.bottle_tags = tuple(bottle_tags)
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self._session = session
        self._owned_session = session is None

    @property
    def session(self) -> aiohttp.ClientSession:
        """获取或创建 aiohttp session"""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._session

    async def _request(self, endpoint: str) -> dict:
        """发送 API 请求，5xx / 429 / 连接错误会退避重试"""
        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                async with self.session.get(endpoint) as response:
                    if response.status == 200:
                        try:
                            return await response.json(content_type=None)
                        except ValueError as e:
                            raise CatalogError(
                                f"API 返回的内容不是合法 JSON: {e}", context={"url": endpoint}
                            ) from e
                    if response.status == 404:
                        raise CatalogNotFoundError(
                            "目录中不存在该条目",
                            context={"url": endpoint},
                            status=404,
                        )
                    error = CatalogError(
                        f"API 请求失败 (状态码: {response.status})",
                        context={"url": endpoint},
                        status=response.status,
                    )
                    if response.status < 500 and response.status != 429:
                        raise error
                    last_error = error
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = e

            if attempt < self.max_retries:
                delay = self.retry_delay * (2 ** (attempt - 1))
                logger.debug(f"[目录] 请求 {endpoint} 失败: {last_error}，{delay:.1f}s 后重试")
                await asyncio.sleep(delay)

        raise CatalogError(
            f"API 请求多次失败: {last_error}", context={"url": endpoint}
        )

    async def get_package(
        self, name: str, kind: PackageKind = PackageKind.FORMULA
    ) -> PackageLookup:
        endpoint = f"{self.base_url}/{KIND_ENDPOINTS[kind]}/{name}.json"
        try:
            data = await self._request(endpoint)
            if kind == PackageKind.CASK:
                package = parse_cask(data)
            else:
                package = parse_formula(data, bottle_tags=self.bottle_tags)
        except CatalogNotFoundError:
            return Unavailable(name, f"{kind.value} not found")
        except CatalogError as e:
            return Unavailable(name, str(e))
        return Found(package)

    async def get_catalog_revision(self, catalog_id: str) -> str:
        """用目录索引的 ETag / Last-Modified 作为修订号"""
        catalog_id = expand_catalog_id(catalog_id)
        index = CATALOG_INDEXES.get(catalog_id)
        if index is None:
            raise CatalogError(
                f"API 不提供该目录: {catalog_id}", context={"catalog": catalog_id}
            )
        url = f"{self.base_url}/{index}"
        try:
            async with self.session.head(url) as response:
                if response.status != 200:
                    raise CatalogError(
                        f"无法获取目录修订号 (状态码: {response.status})",
                        context={"url": url},
                        status=response.status,
                    )
                tag = response.headers.get("ETag") or response.headers.get("Last-Modified")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise CatalogError(
                f"无法获取目录修订号: {e}", context={"url": url}
            ) from e
        if not tag:
            raise CatalogError("目录索引没有 ETag / Last-Modified", context={"url": url})
        if tag.startswith("W/"):
            tag = tag[2:]
        tag = tag.strip('"')
        return f"api-{hashlib.sha256(tag.encode('utf-8')).hexdigest()[:16]}"

    async def close(self):
        """关闭客户端"""
        if self._owned_session and self._session and not self._session.closed:
            await self._session.close()
