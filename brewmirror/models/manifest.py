"""
镜像清单模型

定义 manifest.json 的结构以及显式的序列化 / 反序列化边界。
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from brewmirror.exceptions import ManifestError
from brewmirror.models.package import Package, PackageKind


def utc_now() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


@dataclass
class PackageEntry:
    """清单中的单个包"""

    name: str
    version: str
    kind: PackageKind = PackageKind.FORMULA
    resource_ids: List[str] = field(default_factory=list)

    @property
    def key(self) -> tuple:
        return (self.kind, self.name)

    def matches(self, package: Package) -> bool:
        """名称、类型和版本完全一致"""
        return (
            self.name == package.name
            and self.kind == package.kind
            and self.version == package.version
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "kind": self.kind.value,
            "resource_ids": list(self.resource_ids),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "PackageEntry":
        if not isinstance(data, dict):
            raise ManifestError("清单中的包条目格式无效", context={"entry": data})
        try:
            name = data["name"]
            version = data["version"]
        except KeyError as e:
            raise ManifestError(
                f"清单中的包条目缺少字段: {e.args[0]}", context={"entry": data}
            ) from e
        try:
            kind = PackageKind(data.get("kind", PackageKind.FORMULA.value))
        except ValueError as e:
            raise ManifestError(
                f"未知的包类型: {data.get('kind')}", context={"entry": data}
            ) from e
        resource_ids = data.get("resource_ids", [])
        if not isinstance(resource_ids, list):
            raise ManifestError("resource_ids 必须是列表", context={"entry": data})
        return cls(
            name=str(name),
            version=str(version),
            kind=kind,
            resource_ids=[str(item) for item in resource_ids],
        )


@dataclass
class MirrorManifest:
    """镜像清单"""

    catalog_pins: Dict[str, str] = field(default_factory=dict)
    created_at: str = field(default_factory=utc_now)
    packages: List[PackageEntry] = field(default_factory=list)

    def get(self, name: str, kind: PackageKind = PackageKind.FORMULA) -> Optional[PackageEntry]:
        for entry in self.packages:
            if entry.name == name and entry.kind == kind:
                return entry
        return None

    def index(self) -> Dict[tuple, PackageEntry]:
        return {entry.key: entry for entry in self.packages}

    def to_dict(self) -> Dict[str, Any]:
        packages = sorted(self.packages, key=lambda e: (e.kind.value, e.name))
        return {
            "catalog_pins": dict(sorted(self.catalog_pins.items())),
            "created_at": self.created_at,
            "packages": [entry.to_dict() for entry in packages],
        }

    @classmethod
    def from_dict(cls, data: Any) -> "MirrorManifest":
        if not isinstance(data, dict):
            raise ManifestError("清单格式无效")
        pins = data.get("catalog_pins", {})
        if not isinstance(pins, dict):
            raise ManifestError("catalog_pins 必须是对象")
        packages = data.get("packages", [])
        if not isinstance(packages, list):
            raise ManifestError("packages 必须是列表")
        return cls(
            catalog_pins={str(k): str(v) for k, v in pins.items()},
            created_at=str(data.get("created_at") or utc_now()),
            packages=[PackageEntry.from_dict(item) for item in packages],
        )
