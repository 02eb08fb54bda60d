"""
构建准备流程共享的轻量类型定义。
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class SourceImage:
    """已读取并度量过的源图片；重新读取即重新校验。"""

    path: str
    width: int
    height: int
    has_alpha: bool


@dataclass(frozen=True)
class IconSpec:
    """图标表中的一项：文件名、设备类型、倍率与逻辑尺寸。"""

    filename: str
    # `idiom` 直接使用平台字面值：`iphone` / `ipad` / `ios-marketing`，
    # Android 为屏幕密度 `mdpi` ... `xxxhdpi`。
    idiom: str
    scale: int
    size: float

    @property
    def pixels(self) -> int:
        """期望的物理像素边长（`size * scale`）。"""
        return int(round(self.size * self.scale))


@dataclass(frozen=True)
class IconTable:
    """某平台固定且带版本号的图标规格表。"""

    platform: str
    version: int
    specs: tuple[IconSpec, ...]
    forbid_alpha: bool = True
    # 图标集目录的默认位置（相对工程根目录）。
    default_dir: str = ""

    @property
    def marketing(self) -> IconSpec:
        """返回像素最大的那一项（商店校验最敏感的图标）。"""
        return max(self.specs, key=lambda s: s.pixels)


@dataclass(frozen=True)
class GeneratedIcon:
    """某个规格对应的实际输出文件及其度量结果。"""

    spec: IconSpec
    path: str
    width: int
    height: int
    has_alpha: bool

    def is_valid(self, forbid_alpha: bool) -> bool:
        if self.width != self.spec.pixels or self.height != self.spec.pixels:
            return False
        return not (forbid_alpha and self.has_alpha)


@dataclass(frozen=True)
class PatchRule:
    """描述一次对 plist 文档的声明式修改。"""

    # `kind` 操作类型：
    # - `set_string` / `set_int` / `set_bool`
    # - `delete`
    # - `array_add` / `array_remove`
    kind: str
    key_path: str
    value: Any = None
    # 激活该规则的功能开关；`None` 表示总是生效。
    flag: str | None = None


@dataclass(frozen=True)
class PipelineWarning:
    """非致命问题，最终汇总到就绪报告中。"""

    code: str
    component: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "component": self.component, "message": self.message}


@dataclass
class SigningSources:
    """签名材料来源：URL 或本地路径。"""

    p12: str = ""
    cert: str = ""
    key: str = ""
    profile: str = ""
    password: str = ""

    def is_empty(self) -> bool:
        return not (self.p12 or self.cert or self.key or self.profile)


@dataclass
class BuildContext:
    """贯穿整个流程的唯一可变上下文，由调用方创建一次并按引用传递。"""

    project_root: str = "."
    platform: str = "ios"
    bundle_id: str = ""
    display_name: str = ""
    version_name: str = ""
    build_number: str = ""
    team_id: str = ""
    profile_type: str = "app-store"
    flags: set[str] = field(default_factory=set)

    source_image: str = ""
    # 为空时使用平台规格表的默认目录。
    icon_dir: str = ""
    info_plist: str = "ios/Runner/Info.plist"
    entitlements_plist: str = ""
    backup_dir: str = "ios/.buildprep_backups"
    work_dir: str = ""

    signing: SigningSources = field(default_factory=SigningSources)
    extra_rules: list[PatchRule] = field(default_factory=list)

    # 以下字段由流程各阶段补全。
    profile_uuid: str = ""
    code_sign_identity: str = ""
    credential_path: str = ""

    def resolve(self, path: str) -> str:
        """将相对路径解析为基于 `project_root` 的绝对路径。"""
        if not path:
            return ""
        path = os.path.expanduser(path)
        if os.path.isabs(path):
            return path
        return os.path.abspath(os.path.join(self.project_root, path))

    def has_flag(self, flag: str) -> bool:
        return flag in self.flags

    def identifiers(self) -> dict[str, str]:
        """交给后续编译/签名阶段使用的标识集合。"""
        return {
            "bundle_id": self.bundle_id,
            "team_id": self.team_id,
            "profile_uuid": self.profile_uuid,
            "code_sign_identity": self.code_sign_identity,
            "version_name": self.version_name,
            "build_number": self.build_number,
            "display_name": self.display_name,
        }
