from __future__ import annotations

"""
流程通用工具：外部命令执行、工具探测与阶段日志输出。
"""

import shutil
import subprocess


def log_step(message: str) -> None:
    """输出简洁的流程阶段提示。"""
    print(f"[buildprep] {message}")


def run_cmd(
    cmd: list[str],
    *,
    cwd: str | None = None,
    verbose: bool = False,
    timeout: float | None = None,
) -> bytes:
    """执行外部命令并返回 stdout，失败或超时时抛出带 stderr 的异常。"""
    if verbose:
        if cwd:
            print(f"+ (cd {cwd}) {' '.join(cmd)}")
        else:
            print(f"+ {' '.join(cmd)}")
    try:
        p = subprocess.run(
            cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, cwd=cwd, check=False, timeout=timeout
        )
    except subprocess.TimeoutExpired as e:
        raise RuntimeError(f"Command timed out after {timeout}s: {' '.join(cmd)}") from e
    except OSError as e:
        raise RuntimeError(f"Command could not start: {' '.join(cmd)}\n{e}") from e
    if p.returncode != 0:
        raise RuntimeError(f"Command failed: {' '.join(cmd)}\n{p.stderr.decode(errors='replace')}")
    return p.stdout


def find_tool(*names: str) -> str:
    """按顺序查找第一个存在的可执行文件，找不到时返回空字符串。"""
    for name in names:
        found = shutil.which(name)
        if found:
            return found
    return ""
