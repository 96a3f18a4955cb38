"""
git 下载策略

解析符号引用为具体提交，并把指定提交打包为 tar.gz 存入内容寻址存储。
"""

import re
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import List, Optional

from loguru import logger

from brewmirror.exceptions import GitError

COMMIT_PATTERN = re.compile(r"^[0-9a-f]{40}$")


def is_commit(revision: Optional[str]) -> bool:
    return bool(revision) and bool(COMMIT_PATTERN.fullmatch(revision))


def run_git(argv: List[str], cwd: Optional[Path] = None, timeout: float = 600) -> str:
    command = ["git", *argv]
    try:
        completed = subprocess.run(
            command,
            cwd=cwd,
            check=False,
            text=True,
            capture_output=True,
            timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        raise GitError(
            "git 命令无法执行", context={"argv": " ".join(command), "error": str(e)}
        ) from e
    if completed.returncode != 0:
        raise GitError(
            "git 命令执行失败",
            context={"argv": " ".join(command), "stderr": completed.stderr.strip()},
        )
    return completed.stdout.strip()


def resolve_revision(url: str, ref: str) -> str:
    """把分支 / 标签解析为具体提交"""
    if is_commit(ref):
        return ref
    output = run_git(["ls-remote", url, ref])
    lines = [line for line in output.splitlines() if line.strip()]
    if not lines:
        raise GitError("无法解析 git 引用", context={"url": url, "ref": ref})
    # 附注标签的 ^{} 行才是真正的提交
    for line in lines:
        sha, name = line.split()[:2]
        if name.endswith("^{}"):
            return sha
    return lines[0].split()[0]


def repo_head(path: Path) -> Optional[str]:
    """本地仓库的 HEAD 提交，不是 git 仓库时返回 None"""
    if not (path / ".git").exists():
        return None
    return run_git(["rev-parse", "HEAD"], cwd=path)


def archive_checkout(url: str, revision: str, destination: Path) -> Path:
    """
    克隆仓库并把指定提交导出为 tar.gz

    Args:
        url: 仓库地址
        revision: 具体提交
        destination: 输出文件路径

    Returns:
        输出文件路径
    """
    if not is_commit(revision):
        raise GitError("只能归档具体提交", context={"url": url, "revision": revision})

    destination.parent.mkdir(parents=True, exist_ok=True)
    temp_root = Path(tempfile.mkdtemp(prefix="brewmirror-git-", dir=str(destination.parent)))
    try:
        logger.debug(f"[git] 克隆 {url} @ {revision[:12]}")
        run_git(["clone", "--quiet", "--no-checkout", url, str(temp_root)])
        run_git(
            [
                "archive",
                "--format=tar.gz",
                f"--prefix={destination.name.split('.')[0]}/",
                "-o",
                str(destination),
                revision,
            ],
            cwd=temp_root,
        )
    finally:
        shutil.rmtree(temp_root, ignore_errors=True)
    return destination
