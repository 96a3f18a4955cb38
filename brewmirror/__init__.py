"""
BrewMirror

为离线环境构建 Homebrew 软件包镜像：解析依赖闭包、
按内容寻址下载并校验资源、增量维护镜像清单与 URL 映射。
"""

from brewmirror.orchestrator import MirrorOrchestrator, MirrorRunReport, run_mirror

__version__ = "0.1.0"

__all__ = ["MirrorOrchestrator", "MirrorRunReport", "run_mirror", "__version__"]
