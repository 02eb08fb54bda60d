"""
图标集清单（`Contents.json`）的生成、校验与整体修复。

清单只根据规格表生成，从不扫描磁盘；损坏的清单整体替换，不做局部修补。
"""

from __future__ import annotations

import json
import os
from collections import Counter
from dataclasses import dataclass
from typing import Any

from .errors import StructuralCorruption
from .types import GeneratedIcon, IconSpec, IconTable

_ENTRY_KEYS = ("filename", "idiom", "scale", "size")
MANIFEST_INFO = {"author": "xcode", "version": 1}


@dataclass
class ManifestResult:
    manifest: dict[str, Any]
    repaired: bool
    rewritten: bool


def manifest_entry(spec: IconSpec) -> dict[str, str]:
    return {
        "filename": spec.filename,
        "idiom": spec.idiom,
        "scale": f"{spec.scale}x",
        "size": f"{spec.size:g}x{spec.size:g}",
    }


def build_manifest(table: IconTable) -> dict[str, Any]:
    """根据规格表生成规范清单。"""
    return {
        "images": [manifest_entry(spec) for spec in table.specs],
        "info": dict(MANIFEST_INFO),
    }


def validate_manifest(obj: Any) -> None:
    """结构校验，不合格时抛出 `StructuralCorruption`。"""
    if not isinstance(obj, dict):
        raise StructuralCorruption("manifest root is not an object")
    images = obj.get("images")
    if not isinstance(images, list):
        raise StructuralCorruption("manifest has no images array")
    for i, entry in enumerate(images):
        if not isinstance(entry, dict):
            raise StructuralCorruption(f"images[{i}] is not an object")
        for key in _ENTRY_KEYS:
            if not isinstance(entry.get(key), str) or not entry[key]:
                raise StructuralCorruption(f"images[{i}] has no {key}")
    info = obj.get("info")
    if not isinstance(info, dict) or "version" not in info:
        raise StructuralCorruption("manifest has no info block")


def load_manifest(path: str) -> dict[str, Any]:
    """读取清单；无法解析、被截断或结构错误时抛出 `StructuralCorruption`。"""
    try:
        with open(path, "rb") as f:
            obj = json.loads(f.read().decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise StructuralCorruption(f"manifest is not valid JSON: {path}: {e}") from e
    validate_manifest(obj)
    return obj


def dump_manifest(obj: dict[str, Any]) -> bytes:
    # Xcode 的排版：两空格缩进，键值之间为 " : "。
    text = json.dumps(obj, indent=2, separators=(",", " : "))
    return (text + "\n").encode("utf-8")


def write_manifest(path: str, obj: dict[str, Any]) -> None:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "wb") as f:
        f.write(dump_manifest(obj))


def sync_manifest(path: str, table: IconTable) -> ManifestResult:
    """确保磁盘上的清单与规范清单一致；损坏时整体替换。"""
    canonical = build_manifest(table)
    repaired = False
    if os.path.exists(path):
        try:
            current = load_manifest(path)
        except (StructuralCorruption, OSError):
            repaired = True
        else:
            with open(path, "rb") as f:
                if current == canonical and f.read() == dump_manifest(canonical):
                    return ManifestResult(manifest=canonical, repaired=False, rewritten=False)
    write_manifest(path, canonical)
    return ManifestResult(manifest=canonical, repaired=repaired, rewritten=True)


@dataclass
class BijectionResult:
    """清单条目与合格图标的对应关系检查结果。"""

    missing_icons: list[str]
    unlisted_icons: list[str]
    duplicates: list[str]

    @property
    def ok(self) -> bool:
        return not (self.missing_icons or self.unlisted_icons or self.duplicates)

    def problems(self) -> list[str]:
        out = [f"manifest entry without a valid icon: {n}" for n in self.missing_icons]
        out += [f"valid icon missing from manifest: {n}" for n in self.unlisted_icons]
        out += [f"icon named by more than one manifest entry: {n}" for n in self.duplicates]
        return out


def check_bijection(
    manifest: dict[str, Any], icons: list[GeneratedIcon], forbid_alpha: bool
) -> BijectionResult:
    """按文件名比较清单条目与合格图标两个集合。"""
    counts = Counter(entry["filename"] for entry in manifest.get("images", []))
    valid = {icon.spec.filename for icon in icons if icon.is_valid(forbid_alpha)}
    return BijectionResult(
        missing_icons=sorted(set(counts) - valid),
        unlisted_icons=sorted(valid - set(counts)),
        duplicates=sorted(name for name, n in counts.items() if n > 1),
    )
