"""
目录 JSON 解析

把 Homebrew API 风格的 formula / cask JSON 转换为 Package 对象。
结构不符合预期的 JSON 一律抛出 CatalogError。
"""

from typing import Iterable, List, Optional

from brewmirror.exceptions import CatalogError
from brewmirror.models import (
    DependencyEdge,
    DependencyKind,
    DownloadStrategy,
    Package,
    PackageKind,
    Resource,
)

HTTP_STRATEGIES = {None, "", "curl", "homebrew_curl", "nounzip", "post", "curl_post"}

DEPENDENCY_FIELDS = (
    ("dependencies", DependencyKind.RUNTIME),
    ("build_dependencies", DependencyKind.BUILD),
    ("optional_dependencies", DependencyKind.OPTIONAL),
    ("recommended_dependencies", DependencyKind.RECOMMENDED),
)


def strategy_for(using: Optional[str]) -> str:
    """把 using 标签映射为下载策略，未知标签原样保留"""
    if using in HTTP_STRATEGIES:
        return DownloadStrategy.HTTP.value
    if using == "git":
        return DownloadStrategy.GIT.value
    return str(using)


def _mapping(value, field: str) -> dict:
    """缺省字段视为空对象，其他非对象值视为格式错误"""
    if not value:
        return {}
    if not isinstance(value, dict):
        raise CatalogError(f"字段 {field} 不是 JSON 对象", context={"field": field})
    return value


def _items(value, field: str) -> list:
    if not value:
        return []
    if not isinstance(value, list):
        raise CatalogError(f"字段 {field} 不是 JSON 数组", context={"field": field})
    return value


def _checksum(value, field: str) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    raise CatalogError(f"字段 {field} 的校验和不是字符串", context={"field": field})


def _dependency_names(value, field: str) -> List[str]:
    names = []
    for item in _items(value, field):
        # 依赖既可能是字符串，也可能是 {"name": ..., "tags": [...]} 这样的对象
        if isinstance(item, dict):
            item = item.get("name")
        if item:
            names.append(str(item))
    return names


def _resource_from_spec(spec, name: str) -> Resource:
    spec = _mapping(spec, name)
    url = spec.get("url")
    if not url:
        raise CatalogError(f"资源 {name} 缺少 url", context={"resource": name})
    strategy = strategy_for(spec.get("using"))
    checksum = _checksum(spec.get("checksum") or spec.get("sha256"), name)
    return Resource(
        url=str(url),
        checksum=checksum if strategy == DownloadStrategy.HTTP.value else None,
        strategy=strategy,
        name=name,
        revision=spec.get("revision"),
        ref=spec.get("tag") or spec.get("branch"),
    )


def formula_version(data: dict) -> str:
    """formula 的完整版本号（revision > 0 时追加 _revision）"""
    version = _mapping(data.get("versions"), "versions").get("stable")
    if not version:
        raise CatalogError(
            f"formula {data.get('name')} 没有稳定版本", context={"name": data.get("name")}
        )
    revision = data.get("revision") or 0
    return f"{version}_{revision}" if revision else str(version)


def parse_formula(
    data: dict, catalog: Optional[str] = None, bottle_tags: Iterable[str] = ()
) -> Package:
    """
    解析 formula JSON

    Args:
        data: formula JSON 对象
        catalog: 目录 ID，缺省时使用 JSON 中的 tap
        bottle_tags: 需要镜像的 bottle 平台标签
    """
    if not isinstance(data, dict) or not data.get("name"):
        raise CatalogError("formula JSON 缺少 name")
    name = str(data["name"])

    dependencies = []
    for field_name, kind in DEPENDENCY_FIELDS:
        for dep in _dependency_names(data.get(field_name), field_name):
            dependencies.append(DependencyEdge(dep, kind, PackageKind.FORMULA))

    resources = []
    stable = _mapping(data.get("urls"), "urls").get("stable")
    if stable:
        resources.append(_resource_from_spec(stable, "stable"))

    for item in _items(data.get("resources"), "resources"):
        item = _mapping(item, "resources")
        resources.append(_resource_from_spec(item, f"resource:{item.get('name', '')}"))

    for item in _items(data.get("patches"), "patches"):
        if isinstance(item, dict) and item.get("url"):
            resources.append(_resource_from_spec(item, "patch"))

    bottle = _mapping(_mapping(data.get("bottle"), "bottle").get("stable"), "bottle.stable")
    bottle_files = _mapping(bottle.get("files"), "bottle.stable.files")
    for tag in bottle_tags:
        spec = _mapping(bottle_files.get(tag), f"bottle:{tag}")
        if not spec:
            continue
        if not spec.get("url"):
            raise CatalogError(f"bottle {tag} 缺少 url", context={"name": name, "tag": tag})
        resources.append(
            Resource(
                url=str(spec["url"]),
                checksum=_checksum(spec.get("sha256"), f"bottle:{tag}"),
                name=f"bottle:{tag}",
            )
        )

    if not resources:
        raise CatalogError(f"formula {name} 没有可下载的资源", context={"name": name})

    return Package(
        name=name,
        version=formula_version(data),
        kind=PackageKind.FORMULA,
        dependencies=tuple(dependencies),
        resources=tuple(resources),
        catalog=catalog or data.get("tap"),
    )


def parse_cask(data: dict, catalog: Optional[str] = None) -> Package:
    """解析 cask JSON，cask 可以依赖 formula 和其他 cask"""
    if not isinstance(data, dict) or not data.get("token"):
        raise CatalogError("cask JSON 缺少 token")
    token = str(data["token"])
    url = data.get("url")
    if not url:
        raise CatalogError(f"cask {token} 缺少 url", context={"token": token})

    depends_on = _mapping(data.get("depends_on"), "depends_on")
    dependencies = [
        DependencyEdge(dep, DependencyKind.RUNTIME, PackageKind.FORMULA)
        for dep in _dependency_names(depends_on.get("formula"), "depends_on.formula")
    ]
    dependencies += [
        DependencyEdge(dep, DependencyKind.RUNTIME, PackageKind.CASK)
        for dep in _dependency_names(depends_on.get("cask"), "depends_on.cask")
    ]

    sha256 = _checksum(data.get("sha256"), "sha256")
    using = _mapping(data.get("url_specs"), "url_specs").get("using")
    resource = Resource(
        url=str(url),
        checksum=None if sha256 in (None, "no_check") else sha256,
        strategy=strategy_for(using),
        name="cask",
    )

    return Package(
        name=token,
        version=str(data.get("version") or "latest"),
        kind=PackageKind.CASK,
        dependencies=tuple(dependencies),
        resources=(resource,),
        catalog=catalog or data.get("tap"),
    )
