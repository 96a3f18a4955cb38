import json
import os
import tempfile
from pathlib import Path
from typing import Any, Union
from urllib.parse import urlsplit

import toml
import yaml

from brewmirror.exceptions import ConfigError, ConfigParseError

# 多段扩展名需要优先匹配
MULTI_PART_EXTENSIONS = (".tar.gz", ".tar.bz2", ".tar.xz", ".tar.zst")
KNOWN_EXTENSIONS = (
    ".tgz",
    ".tbz",
    ".txz",
    ".zip",
    ".dmg",
    ".pkg",
    ".mpkg",
    ".7z",
    ".rar",
    ".jar",
    ".xz",
    ".gz",
    ".bz2",
    ".diff",
    ".patch",
)


def load_config(config_path: Union[str, Path]) -> dict:
    """按扩展名加载 TOML / JSON / YAML 配置文件"""
    path = Path(config_path)

    if not path.exists():
        raise ConfigError(f"配置文件不存在: {config_path}")

    suffix = path.suffix.lower()
    text = path.read_text(encoding="utf-8")

    try:
        if suffix == ".toml":
            return toml.loads(text)
        elif suffix == ".json":
            return json.loads(text)
        elif suffix in (".yaml", ".yml"):
            return yaml.safe_load(text) or {}
    except (toml.TomlDecodeError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigParseError(
            f"配置文件解析失败: {config_path}", context={"error": str(e)}
        ) from e

    raise ConfigError(f"不支持的配置文件格式: {suffix}")


def detect_extension(url: str) -> str:
    """从 URL 路径推断文件扩展名，未知时返回空字符串"""
    path = urlsplit(url).path.lower()
    for ext in MULTI_PART_EXTENSIONS:
        if path.endswith(ext):
            return ext
    for ext in KNOWN_EXTENSIONS:
        if path.endswith(ext):
            return ext
    return ""


def atomic_write_json(path: Union[str, Path], payload: Any) -> Path:
    """
    原子写入 JSON 文件

    先写入同目录下的临时文件，再通过 os.replace 替换，崩溃时不会留下半个文件。
    """
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{target.name}.", suffix=".tmp", dir=str(target.parent)
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, sort_keys=True, ensure_ascii=False)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, target)
    except BaseException:
        if os.path.exists(tmp_name):
            os.remove(tmp_name)
        raise
    return target


def format_size(num_bytes: float) -> str:
    """人类可读的文件大小"""
    units = ["B", "KB", "MB", "GB"]
    size = float(num_bytes)
    for unit in units[:-1]:
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} {units[-1]}"
