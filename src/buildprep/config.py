"""
从 CI 环境变量构建 `BuildContext`。

环境只在这里读取一次；之后各组件只认显式传入的上下文。
"""

from __future__ import annotations

import os
from collections.abc import Mapping

from .descriptor import FEATURE_FLAGS
from .types import BuildContext, SigningSources

DEFAULT_ENTITLEMENTS = "ios/Runner/Runner.entitlements"

# 上下文字段 -> 环境变量名。
_ENV_FIELDS = {
    "bundle_id": "BUNDLE_ID",
    "display_name": "APP_NAME",
    "version_name": "VERSION_NAME",
    "build_number": "VERSION_CODE",
    "team_id": "APPLE_TEAM_ID",
    "profile_type": "PROFILE_TYPE",
    "source_image": "LOGO_PATH",
}

_ENV_SIGNING = {
    "profile": "PROFILE_URL",
    "p12": "CERT_P12_URL",
    "cert": "CERT_CER_URL",
    "key": "CERT_KEY_URL",
    "password": "CERT_PASSWORD",
}

_TRUE = ("true", "1", "yes", "y", "on")
_FALSE = ("false", "0", "no", "n", "off", "")


def parse_flag(value: str) -> bool:
    v = value.strip().lower()
    if v in _TRUE:
        return True
    if v in _FALSE:
        return False
    raise ValueError(f"invalid boolean value: {value!r}")


def flags_from_env(environ: Mapping[str, str]) -> set[str]:
    """读取 `IS_CAMERA` 这类开关，返回被启用的功能名集合。"""
    flags: set[str] = set()
    for flag in FEATURE_FLAGS:
        name = f"IS_{flag.upper()}"
        raw = environ.get(name)
        if raw is None:
            continue
        try:
            enabled = parse_flag(raw)
        except ValueError as e:
            raise ValueError(f"{name}: {e}") from e
        if enabled:
            flags.add(flag)
    return flags


def default_entitlements(project_root: str) -> str:
    """工程里存在默认 entitlements 文件时返回其相对路径，否则返回空字符串。"""
    if os.path.isfile(os.path.join(project_root, DEFAULT_ENTITLEMENTS)):
        return DEFAULT_ENTITLEMENTS
    return ""


def context_from_env(environ: Mapping[str, str] | None = None, *, project_root: str = ".") -> BuildContext:
    if environ is None:
        environ = os.environ

    values = {
        field_name: environ[var].strip()
        for field_name, var in _ENV_FIELDS.items()
        if environ.get(var, "").strip()
    }
    signing = SigningSources(**{
        field_name: environ.get(var, "").strip() for field_name, var in _ENV_SIGNING.items()
    })
    return BuildContext(
        project_root=project_root,
        flags=flags_from_env(environ),
        entitlements_plist=default_entitlements(project_root),
        signing=signing,
        **values,
    )
