"""
BrewMirror 服务层

包含元数据提供者（Homebrew API / 本地目录）、目录解析与依赖解析。
"""

from brewmirror.services.provider import PackageMetadataProvider, expand_catalog_id
from brewmirror.services.catalog_client import HomebrewAPIClient
from brewmirror.services.local_catalog import LocalCatalogProvider
from brewmirror.services.dependency_resolver import DependencyResolver, dependency_tree

__all__ = [
    "PackageMetadataProvider",
    "expand_catalog_id",
    "HomebrewAPIClient",
    "LocalCatalogProvider",
    "DependencyResolver",
    "dependency_tree",
]
