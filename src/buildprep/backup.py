"""
修改前备份：每个持久化产物在被修改前复制一份带时间戳的副本。

备份在整次流程校验通过后删除；任何致命失败都会按逆序恢复。
"""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass
from datetime import datetime


@dataclass
class BackupHandle:
    """一个文件或目录的备份句柄。"""

    target: str
    backup_path: str
    existed: bool
    is_dir: bool

    def restore(self) -> None:
        """把目标恢复到备份时的状态；备份时不存在的目标会被删除。"""
        if os.path.isdir(self.target) and not os.path.islink(self.target):
            shutil.rmtree(self.target)
        elif os.path.lexists(self.target):
            os.remove(self.target)
        if not self.existed:
            return
        if self.is_dir:
            shutil.copytree(self.backup_path, self.target, symlinks=True)
        else:
            shutil.copy2(self.backup_path, self.target)

    def discard(self) -> None:
        if not self.backup_path or not os.path.lexists(self.backup_path):
            return
        if self.is_dir:
            shutil.rmtree(self.backup_path)
        else:
            os.remove(self.backup_path)


def create_backup(target: str, backup_dir: str) -> BackupHandle:
    """为 `target` 创建带时间戳的备份并返回句柄。"""
    if not os.path.lexists(target):
        return BackupHandle(target=target, backup_path="", existed=False, is_dir=False)

    os.makedirs(backup_dir, exist_ok=True)
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
    name = os.path.basename(os.path.normpath(target))
    backup_path = os.path.join(backup_dir, f"{name}.{stamp}.bak")
    is_dir = os.path.isdir(target)
    if is_dir:
        shutil.copytree(target, backup_path, symlinks=True)
    else:
        shutil.copy2(target, backup_path)
    return BackupHandle(target=target, backup_path=backup_path, existed=True, is_dir=is_dir)


def remove_empty_dir(path: str) -> None:
    if os.path.isdir(path) and not os.listdir(path):
        os.rmdir(path)
