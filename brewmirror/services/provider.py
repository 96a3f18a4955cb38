"""
包元数据提供者接口

依赖解析器只通过该接口查询包信息，不关心元数据来自 API 还是本地目录。
"""

from abc import ABC, abstractmethod

from brewmirror.models import PackageKind, PackageLookup


class PackageMetadataProvider(ABC):
    @abstractmethod
    async def get_package(
        self, name: str, kind: PackageKind = PackageKind.FORMULA
    ) -> PackageLookup:
        """
        查询包信息。

        Returns:
            Found(package) 或 Unavailable(name, reason)
        """

    @abstractmethod
    async def get_catalog_revision(self, catalog_id: str) -> str:
        """
        获取目录当前的修订号，用于镜像的可复现固定。

        Raises:
            CatalogError: 无法确定修订号
        """

    async def close(self):
        """释放资源"""

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


CATALOG_SHORTHANDS = {
    "core": "homebrew/core",
    "cask": "homebrew/cask",
    "casks": "homebrew/cask",
}


def expand_catalog_id(catalog_id: str) -> str:
    """
    规范化目录 ID

    "core" -> "homebrew/core"，"homebrew/homebrew-cask" -> "homebrew/cask"
    """
    catalog_id = catalog_id.strip()
    if "/" not in catalog_id:
        lowered = catalog_id.lower()
        return CATALOG_SHORTHANDS.get(lowered, f"homebrew/{lowered}")
    user, repo = catalog_id.split("/", 1)
    if repo.startswith("homebrew-"):
        repo = repo[len("homebrew-"):]
    return f"{user.lower()}/{repo.lower()}"
