"""
配置模型

镜像任务配置，支持从 dict（TOML / JSON / YAML 解析结果）构建。
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from brewmirror.exceptions import ConfigError, ConfigValidationError
from brewmirror.models.package import ResolveOptions

DEFAULT_API_URL = "https://formulae.brew.sh/api"
DEFAULT_CATALOGS = ["homebrew/core", "homebrew/cask"]


def _as_list(value: Any, name: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, (list, tuple)):
        raise ConfigValidationError(f"{name} 必须是字符串列表", context={"value": value})
    return [str(item) for item in value]


def _as_number(data: dict, key: str, default, cast, minimum):
    value = data.get(key, default)
    try:
        value = cast(value)
    except (TypeError, ValueError) as e:
        raise ConfigValidationError(
            f"{key} 配置无效: {value!r}", context={"key": key}
        ) from e
    if value < minimum:
        raise ConfigValidationError(
            f"{key} 不能小于 {minimum}", context={"key": key, "value": value}
        )
    return value


def _as_bool(data: dict, key: str, default: bool = False) -> bool:
    # "false" 之类的字符串不做隐式转换
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ConfigValidationError(
            f"{key} 必须是布尔值: {value!r}", context={"key": key, "value": value}
        )
    return value


@dataclass
class CatalogConfig:
    """元数据目录配置"""

    source: str = "api"  # api / local
    url: str = DEFAULT_API_URL
    path: Optional[str] = None
    ids: List[str] = field(default_factory=lambda: list(DEFAULT_CATALOGS))
    bottle_tags: List[str] = field(default_factory=list)
    timeout: float = 30.0
    max_retries: int = 3

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "CatalogConfig":
        data = data or {}
        source = str(data.get("source", "api")).lower()
        if source not in ("api", "local"):
            raise ConfigValidationError(
                f"catalog.source 必须为 api/local，当前为 {source}"
            )
        path = data.get("path")
        if source == "local" and not path:
            raise ConfigValidationError("catalog.source 为 local 时必须配置 catalog.path")
        ids = _as_list(data.get("ids"), "catalog.ids") or list(DEFAULT_CATALOGS)
        return cls(
            source=source,
            url=str(data.get("url", DEFAULT_API_URL)).rstrip("/"),
            path=str(path) if path else None,
            ids=ids,
            bottle_tags=_as_list(data.get("bottle_tags"), "catalog.bottle_tags"),
            timeout=_as_number(data, "timeout", 30.0, float, 0),
            max_retries=_as_number(data, "max_retries", 3, int, 1),
        )


@dataclass
class MirrorConfig:
    """镜像任务配置"""

    mirror_dir: str
    formulas: List[str] = field(default_factory=list)
    casks: List[str] = field(default_factory=list)
    resolve_dependencies: bool = False
    include_build: bool = False
    include_optional: bool = False
    include_recommended: bool = False
    max_concurrent: int = 4
    max_retries: int = 3
    retry_delay: float = 1.0
    politeness_delay: float = 0.0
    timeout: float = 300.0
    min_file_size: int = 1
    fresh_pins: bool = False
    prune: bool = False
    commit_partial: bool = False
    log_file: Optional[str] = None
    catalog: CatalogConfig = field(default_factory=CatalogConfig)

    @property
    def mirror_path(self) -> Path:
        return Path(self.mirror_dir)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MirrorConfig":
        if not isinstance(data, dict):
            raise ConfigValidationError("配置必须是一个对象")
        mirror_dir = data.get("mirror_dir")
        if not mirror_dir:
            raise ConfigValidationError("请配置 mirror_dir")
        return cls(
            mirror_dir=str(mirror_dir),
            formulas=_as_list(data.get("formulas"), "formulas"),
            casks=_as_list(data.get("casks"), "casks"),
            resolve_dependencies=_as_bool(data, "resolve_dependencies"),
            include_build=_as_bool(data, "include_build"),
            include_optional=_as_bool(data, "include_optional"),
            include_recommended=_as_bool(data, "include_recommended"),
            max_concurrent=_as_number(data, "max_concurrent", 4, int, 1),
            max_retries=_as_number(data, "max_retries", 3, int, 1),
            retry_delay=_as_number(data, "retry_delay", 1.0, float, 0),
            politeness_delay=_as_number(data, "politeness_delay", 0.0, float, 0),
            timeout=_as_number(data, "timeout", 300.0, float, 0),
            min_file_size=_as_number(data, "min_file_size", 1, int, 1),
            fresh_pins=_as_bool(data, "fresh_pins"),
            prune=_as_bool(data, "prune"),
            commit_partial=_as_bool(data, "commit_partial"),
            log_file=data.get("log_file"),
            catalog=CatalogConfig.from_dict(data.get("catalog")),
        )

    def validate(self) -> None:
        """在任何网络操作之前检查配置组合"""
        if not self.formulas and not self.casks:
            raise ConfigError("请配置至少一个 formula 或 cask")
        if not self.resolve_dependencies:
            for flag in ("include_build", "include_optional", "include_recommended"):
                if getattr(self, flag):
                    raise ConfigError(
                        f"{flag} 需要同时启用 resolve_dependencies",
                        context={"flag": flag, "requires": "resolve_dependencies"},
                    )

    def resolve_options(self) -> ResolveOptions:
        return ResolveOptions(
            include_build=self.include_build,
            include_optional=self.include_optional,
            include_recommended=self.include_recommended,
            recursive=self.resolve_dependencies,
        )
