"""
各平台固定的图标规格表。

规格表是编译期常量而非用户输入；调整内容时必须同时提升 `version`。
"""

from __future__ import annotations

from .types import IconSpec, IconTable


def _spec(idiom: str, size: float, scale: int) -> IconSpec:
    label = f"{size:g}x{size:g}"
    return IconSpec(filename=f"Icon-App-{label}@{scale}x.png", idiom=idiom, scale=scale, size=size)


IOS_TABLE = IconTable(
    platform="ios",
    version=1,
    specs=(
        _spec("iphone", 20, 2),
        _spec("iphone", 20, 3),
        _spec("iphone", 29, 2),
        _spec("iphone", 29, 3),
        _spec("iphone", 40, 2),
        _spec("iphone", 40, 3),
        _spec("iphone", 60, 2),
        _spec("iphone", 60, 3),
        _spec("ipad", 20, 1),
        _spec("ipad", 29, 1),
        _spec("ipad", 40, 1),
        _spec("ipad", 76, 1),
        _spec("ipad", 76, 2),
        _spec("ipad", 83.5, 2),
        _spec("ios-marketing", 1024, 1),
    ),
    forbid_alpha=True,
    default_dir="ios/Runner/Assets.xcassets/AppIcon.appiconset",
)


def _launcher(density: str, pixels: int) -> IconSpec:
    return IconSpec(filename=f"mipmap-{density}/ic_launcher.png", idiom=density, scale=1, size=pixels)


# Android 启动图标按密度分目录存放，允许透明通道，没有清单文件。
ANDROID_TABLE = IconTable(
    platform="android",
    version=1,
    specs=(
        _launcher("mdpi", 48),
        _launcher("hdpi", 72),
        _launcher("xhdpi", 96),
        _launcher("xxhdpi", 144),
        _launcher("xxxhdpi", 192),
    ),
    forbid_alpha=False,
    default_dir="android/app/src/main/res",
)

TABLES: dict[str, IconTable] = {t.platform: t for t in (IOS_TABLE, ANDROID_TABLE)}


def get_table(platform: str) -> IconTable:
    """按平台名返回规格表，未知平台时抛出 `ValueError`。"""
    try:
        return TABLES[platform]
    except KeyError:
        known = ", ".join(sorted(TABLES))
        raise ValueError(f"unknown platform: {platform} (known: {known})") from None
