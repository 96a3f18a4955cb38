"""
BrewMirror 统一异常体系

提供分层的异常结构，支持错误代码、上下文信息和 JSON 序列化。
"""

from typing import Any, Dict, Optional


class BrewMirrorError(Exception):
    """BrewMirror 基础异常类"""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self._get_default_code()
        self.context = context or {}

    def _get_default_code(self) -> str:
        """获取默认错误代码"""
        return "E000"

    def to_dict(self) -> Dict[str, Any]:
        """将异常转换为字典格式"""
        return {
            "error": True,
            "code": self.code,
            "message": self.message,
            "context": self.context,
            "type": self.__class__.__name__,
        }

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message


class ConfigError(BrewMirrorError):
    """配置相关错误"""

    def _get_default_code(self) -> str:
        return "E100"


class ConfigParseError(ConfigError):
    """配置解析错误"""

    def _get_default_code(self) -> str:
        return "E101"


class ConfigValidationError(ConfigError):
    """配置验证错误"""

    def _get_default_code(self) -> str:
        return "E102"


class CatalogError(BrewMirrorError):
    """元数据目录（catalog）相关错误"""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        status: Optional[int] = None,
    ):
        super().__init__(message, code, context)
        self.status = status
        if status is not None:
            self.context["status_code"] = status

    def _get_default_code(self) -> str:
        return "E200"


class CatalogNotFoundError(CatalogError):
    """目录中不存在该包"""

    def _get_default_code(self) -> str:
        return "E204"


class DownloadError(BrewMirrorError):
    """下载相关错误"""

    def _get_default_code(self) -> str:
        return "E300"


class DownloadNetworkError(DownloadError):
    """下载网络错误（可重试）"""

    def _get_default_code(self) -> str:
        return "E301"


class IntegrityError(DownloadError):
    """校验和不匹配，整个镜像任务必须中止"""

    def _get_default_code(self) -> str:
        return "E302"


class DownloadPermanentError(DownloadError):
    """不可重试的下载错误（如 404）"""

    def _get_default_code(self) -> str:
        return "E304"


class UnsupportedStrategyError(DownloadError):
    """不支持的下载策略"""

    def _get_default_code(self) -> str:
        return "E305"


class GitError(DownloadError):
    """git 命令执行失败"""

    def _get_default_code(self) -> str:
        return "E306"


class IdentifierError(DownloadError):
    """无法为资源生成稳定标识"""

    def _get_default_code(self) -> str:
        return "E307"


class ManifestError(BrewMirrorError):
    """清单 / URL 映射文件错误"""

    def _get_default_code(self) -> str:
        return "E400"


class URLMapConflictError(ManifestError):
    """同一 URL 在一次运行中映射到不同内容"""

    def _get_default_code(self) -> str:
        return "E401"


class MirrorIntegrityError(IntegrityError):
    """镜像任务中出现校验失败，清单未提交"""

    def _get_default_code(self) -> str:
        return "E310"


__all__ = [
    # 基础异常
    "BrewMirrorError",
    # 配置异常
    "ConfigError",
    "ConfigParseError",
    "ConfigValidationError",
    # 目录异常
    "CatalogError",
    "CatalogNotFoundError",
    # 下载异常
    "DownloadError",
    "DownloadNetworkError",
    "IntegrityError",
    "DownloadPermanentError",
    "UnsupportedStrategyError",
    "GitError",
    "IdentifierError",
    "MirrorIntegrityError",
    # 清单异常
    "ManifestError",
    "URLMapConflictError",
]
