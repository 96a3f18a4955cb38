"""
本地目录元数据提供者

读取与 Homebrew API 布局相同的本地目录：
    <root>/formula/<name>.json
    <root>/cask/<token>.json
"""

import asyncio
import hashlib
import json
from pathlib import Path
from typing import Iterable, Union

import aiofiles
from loguru import logger

from brewmirror.download.git import repo_head
from brewmirror.exceptions import CatalogError, GitError
from brewmirror.models import Found, PackageKind, PackageLookup, Unavailable
from brewmirror.services.catalog_parser import parse_cask, parse_formula
from brewmirror.services.provider import PackageMetadataProvider, expand_catalog_id

CATALOG_SUBDIRS = {
    "homebrew/core": "formula",
    "homebrew/cask": "cask",
}


class LocalCatalogProvider(PackageMetadataProvider):
    """本地 JSON 目录"""

    def __init__(self, root: Union[str, Path], bottle_tags: Iterable[str] = ()):
        self.root = Path(root)
        self.bottle_tags = tuple(bottle_tags)
        if not self.root.is_dir():
            raise CatalogError(f"本地目录不存在: {self.root}", context={"path": str(self.root)})

    def _path_for(self, name: str, kind: PackageKind) -> Path:
        # 名称里不允许出现路径分隔符
        if "/" in name or "\\" in name or name.startswith("."):
            raise CatalogError(f"非法的包名: {name}", context={"name": name})
        return self.root / kind.value / f"{name}.json"

    async def get_package(
        self, name: str, kind: PackageKind = PackageKind.FORMULA
    ) -> PackageLookup:
        try:
            path = self._path_for(name, kind)
        except CatalogError as e:
            return Unavailable(name, str(e))
        if not path.is_file():
            return Unavailable(name, f"{kind.value} not found")

        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                data = json.loads(await f.read())
            if kind == PackageKind.CASK:
                package = parse_cask(data)
            else:
                package = parse_formula(data, bottle_tags=self.bottle_tags)
        except (OSError, ValueError, CatalogError) as e:
            # ValueError 覆盖非法 JSON 与非 UTF-8 内容
            logger.debug(f"[目录] 读取 {path} 失败: {e}")
            return Unavailable(name, str(e))
        return Found(package)

    async def get_catalog_revision(self, catalog_id: str) -> str:
        """git 仓库返回 HEAD 提交，否则返回 JSON 内容摘要"""
        catalog_id = expand_catalog_id(catalog_id)
        try:
            head = await asyncio.to_thread(repo_head, self.root)
        except GitError as e:
            raise CatalogError(
                f"无法读取目录修订号: {e}", context={"catalog": catalog_id}
            ) from e
        if head:
            return head
        subdir = CATALOG_SUBDIRS.get(catalog_id)
        base = self.root / subdir if subdir else self.root
        return await asyncio.to_thread(self._content_digest, base)

    @staticmethod
    def _content_digest(base: Path) -> str:
        digest = hashlib.sha256()
        if base.is_dir():
            for path in sorted(base.rglob("*.json")):
                digest.update(path.relative_to(base).as_posix().encode("utf-8"))
                digest.update(b"\0")
                digest.update(path.read_bytes())
        return f"content-{digest.hexdigest()[:16]}"
