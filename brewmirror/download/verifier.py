"""
文件校验器

实现 SHA256 校验、文件存在性检查、不完整文件检测与清理。
"""

import hashlib
import os
from typing import Optional

import aiofiles
from loguru import logger

CHUNK_SIZE = 65536


class FileVerifier:
    """文件校验器"""

    @staticmethod
    async def calc_sha256(file_path: str) -> Optional[str]:
        """
        计算文件的 SHA256 值

        Args:
            file_path: 文件路径

        Returns:
            SHA256 哈希值或 None（如果文件不存在）
        """
        if not os.path.isfile(file_path):
            return None

        sha256 = hashlib.sha256()
        try:
            async with aiofiles.open(file_path, "rb") as f:
                while True:
                    data = await f.read(CHUNK_SIZE)
                    if not data:
                        break
                    sha256.update(data)
            return sha256.hexdigest()
        except (IOError, OSError):
            return None

    @staticmethod
    async def verify_sha256(file_path: str, expected: Optional[str]) -> bool:
        """
        校验文件的 SHA256 是否匹配

        没有预期值（:unchecked）时返回 True。
        """
        if not expected:
            return True

        actual = await FileVerifier.calc_sha256(file_path)
        if actual is None:
            return False

        if actual != expected.lower():
            logger.warning(f"[校验] 校验和不匹配: {os.path.basename(file_path)}")
            logger.warning(f"  预期: {expected}")
            logger.warning(f"  实际: {actual}")
            return False
        return True

    @staticmethod
    def get_size(file_path: str) -> int:
        """获取文件大小"""
        try:
            return os.path.getsize(file_path)
        except (IOError, OSError):
            return 0

    @staticmethod
    def is_partial(file_path: str, min_size: int = 1) -> bool:
        """文件存在但小于最小尺寸（包括 0 字节）"""
        return os.path.isfile(file_path) and FileVerifier.get_size(file_path) < min_size

    @staticmethod
    def cleanup_partial(file_path: str, min_size: int = 1) -> bool:
        """
        清理不完整的下载文件

        Returns:
            是否删除了文件
        """
        if not FileVerifier.is_partial(file_path, min_size):
            return False
        size = FileVerifier.get_size(file_path)
        logger.warning(f"[清理] 删除不完整的下载 ({size} 字节): {file_path}")
        os.remove(file_path)
        return True

    @staticmethod
    async def is_valid(
        file_path: str, expected: Optional[str] = None, min_size: int = 1
    ) -> bool:
        """
        检查缓存文件是否有效

        要求文件存在、不小于最小尺寸，且在已知校验和时必须匹配。
        """
        if not os.path.isfile(file_path):
            return False

        if FileVerifier.get_size(file_path) < min_size:
            return False

        if expected:
            return await FileVerifier.verify_sha256(file_path, expected)

        return True
