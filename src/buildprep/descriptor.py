"""
应用描述文件（`Info.plist` / `*.entitlements`）的声明式修补。

规则按功能开关分组：开关打开时整组生效，任一规则失败则整组不生效。
规则值只取决于构建上下文，因此重复应用是无副作用的。
文件损坏时用仅含身份字段的最小模板替换，再重放全部规则组。
"""

from __future__ import annotations

import copy
import os
import plistlib
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any
from xml.parsers.expat import ExpatError

from .errors import PatchError, StructuralCorruption
from .plist_edit import array_add_string, array_remove_string, delete_value, dump_plist, set_value
from .types import BuildContext, PatchRule

COMPONENT = "descriptor"

FEATURE_FLAGS = (
    "camera",
    "location",
    "mic",
    "chatbot",
    "contact",
    "biometric",
    "calendar",
    "storage",
    "notification",
)


@dataclass(frozen=True)
class RuleGroup:
    """同一功能开关下的一组规则；`flag` 为 `None` 表示总是生效。"""

    name: str
    flag: str | None
    rules: tuple[PatchRule, ...]


@dataclass(frozen=True)
class DescriptorKind:
    """一类描述文件：对应的规则组与损坏时使用的模板。"""

    name: str
    rule_groups: Callable[[BuildContext], list[RuleGroup]]
    template: Callable[[BuildContext], dict[str, Any]]


@dataclass
class DescriptorResult:
    doc: dict[str, Any]
    repaired: bool
    changed: bool
    applied: list[str] = field(default_factory=list)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        v = value.strip().lower()
        if v in ("true", "1", "yes", "y"):
            return True
        if v in ("false", "0", "no", "n"):
            return False
        raise ValueError(f"invalid bool: {value}")
    return bool(value)


def apply_rule(doc: dict[str, Any], rule: PatchRule) -> None:
    """将单条规则应用到文档。"""
    if rule.kind == "set_string":
        set_value(doc, rule.key_path, "" if rule.value is None else str(rule.value))
    elif rule.kind == "set_int":
        set_value(doc, rule.key_path, int(rule.value or 0))
    elif rule.kind == "set_bool":
        set_value(doc, rule.key_path, _as_bool(rule.value))
    elif rule.kind == "delete":
        delete_value(doc, rule.key_path)
    elif rule.kind == "array_add":
        array_add_string(doc, rule.key_path, str(rule.value or ""))
    elif rule.kind == "array_remove":
        array_remove_string(doc, rule.key_path, str(rule.value or ""))
    else:
        raise ValueError(f"unknown rule kind: {rule.kind}")


def active_groups(groups: Iterable[RuleGroup], flags: Iterable[str]) -> list[RuleGroup]:
    enabled = set(flags)
    return [g for g in groups if g.flag is None or g.flag in enabled]


def apply_rule_groups(
    doc: dict[str, Any], groups: Sequence[RuleGroup], flags: Iterable[str]
) -> list[str]:
    """按顺序应用所有激活的规则组，返回已应用的组名。

    组内带 `flag` 的单条规则只在该开关打开时生效。
    """
    enabled = set(flags)
    applied: list[str] = []
    for group in active_groups(groups, enabled):
        trial = copy.deepcopy(doc)
        for rule in group.rules:
            if rule.flag is not None and rule.flag not in enabled:
                continue
            try:
                apply_rule(trial, rule)
            except (TypeError, ValueError) as e:
                raise PatchError(
                    f"rule group '{group.name}' failed at {rule.kind} {rule.key_path}: {e}"
                ) from e
        doc.clear()
        doc.update(trial)
        applied.append(group.name)
    return applied


def _group(name: str, flag: str | None, rules: Sequence[tuple[str, str, Any]]) -> RuleGroup:
    return RuleGroup(
        name=name,
        flag=flag,
        rules=tuple(PatchRule(kind=k, key_path=p, value=v, flag=flag) for k, p, v in rules),
    )


def aps_environment(ctx: BuildContext) -> str:
    return "production" if ctx.profile_type == "app-store" else "development"


def info_plist_rule_groups(ctx: BuildContext) -> list[RuleGroup]:
    """`Info.plist` 的规则组。"""
    name = ctx.display_name or "This app"

    identity: list[tuple[str, str, Any]] = []
    if ctx.bundle_id:
        identity.append(("set_string", "CFBundleIdentifier", ctx.bundle_id))
    if ctx.display_name:
        identity.append(("set_string", "CFBundleDisplayName", ctx.display_name))
        identity.append(("set_string", "CFBundleName", ctx.display_name))
    if ctx.version_name:
        identity.append(("set_string", "CFBundleShortVersionString", ctx.version_name))
    if ctx.build_number:
        identity.append(("set_string", "CFBundleVersion", ctx.build_number))
    identity.append(("set_bool", "NSAppTransportSecurity:NSAllowsArbitraryLoads", True))

    location = f"{name} needs access to your location to provide location-based services."
    groups = [
        _group("identity", None, identity),
        _group("camera", "camera", [
            ("set_string", "NSCameraUsageDescription",
             f"{name} needs access to your camera to take photos and videos."),
        ]),
        _group("location", "location", [
            ("set_string", "NSLocationWhenInUseUsageDescription", location),
            ("set_string", "NSLocationAlwaysAndWhenInUseUsageDescription", location),
            ("set_string", "NSLocationAlwaysUsageDescription", location),
        ]),
        _group("mic", "mic", [
            ("set_string", "NSMicrophoneUsageDescription",
             f"{name} needs access to your microphone for voice recording and communication."),
        ]),
        _group("chatbot", "chatbot", [
            ("set_string", "NSSpeechRecognitionUsageDescription",
             f"{name} needs access to speech recognition to convert your voice to text "
             "for the chat bot feature."),
        ]),
        _group("contact", "contact", [
            ("set_string", "NSContactsUsageDescription",
             f"{name} needs access to your contacts to help you connect with friends and family."),
        ]),
        _group("biometric", "biometric", [
            ("set_string", "NSFaceIDUsageDescription",
             f"{name} uses Face ID to securely authenticate you and protect your personal "
             "information."),
        ]),
        _group("calendar", "calendar", [
            ("set_string", "NSCalendarsUsageDescription",
             f"{name} needs access to your calendar to help you manage your schedule and events."),
        ]),
        _group("storage", "storage", [
            ("set_string", "NSPhotoLibraryUsageDescription",
             f"{name} needs access to your photo library to save and share images."),
            ("set_string", "NSPhotoLibraryAddUsageDescription",
             f"{name} needs access to your photo library to save images and videos."),
        ]),
        _group("notification", "notification", [
            ("array_add", "UIBackgroundModes", "remote-notification"),
            ("set_string", "NSUserNotificationUsageDescription",
             f"{name} needs to send you notifications to keep you updated with important "
             "information."),
            ("set_string", "aps-environment", aps_environment(ctx)),
            ("set_bool", "FirebaseAppDelegateProxyEnabled", False),
        ]),
    ]
    if ctx.extra_rules:
        groups.append(RuleGroup(name="extra", flag=None, rules=tuple(ctx.extra_rules)))
    return groups


def entitlement_rule_groups(ctx: BuildContext) -> list[RuleGroup]:
    """签名权限文件的规则组。"""
    env = aps_environment(ctx)
    return [
        _group("notification", "notification", [
            ("set_string", "aps-environment", env),
            ("set_string", "com.apple.developer.aps-environment", env),
        ]),
    ]


def info_plist_template(ctx: BuildContext) -> dict[str, Any]:
    """只含身份字段的最小 `Info.plist`；未知值保留 Xcode 构建变量。"""
    name = ctx.display_name or "$(PRODUCT_NAME)"
    return {
        "CFBundleDevelopmentRegion": "$(DEVELOPMENT_LANGUAGE)",
        "CFBundleDisplayName": name,
        "CFBundleExecutable": "$(EXECUTABLE_NAME)",
        "CFBundleIdentifier": ctx.bundle_id or "$(PRODUCT_BUNDLE_IDENTIFIER)",
        "CFBundleInfoDictionaryVersion": "6.0",
        "CFBundleName": name,
        "CFBundlePackageType": "APPL",
        "CFBundleShortVersionString": ctx.version_name or "$(FLUTTER_BUILD_NAME)",
        "CFBundleVersion": ctx.build_number or "$(FLUTTER_BUILD_NUMBER)",
    }


INFO_PLIST = DescriptorKind("Info.plist", info_plist_rule_groups, info_plist_template)
ENTITLEMENTS = DescriptorKind("entitlements", entitlement_rule_groups, lambda _ctx: {})


def validate_descriptor(obj: Any) -> None:
    if not isinstance(obj, dict):
        raise StructuralCorruption("descriptor root is not a dict")


def parse_descriptor(data: bytes) -> dict[str, Any]:
    """解析描述文件；空文件、截断或结构错误都视为损坏。"""
    try:
        obj = plistlib.loads(data)
    except (ValueError, ExpatError) as e:
        raise StructuralCorruption(f"descriptor is not a valid plist: {e}") from e
    validate_descriptor(obj)
    return obj


def patch_descriptor(path: str, ctx: BuildContext, kind: DescriptorKind) -> DescriptorResult:
    """加载（必要时按模板重建）并应用全部规则组；内容变化时才写回。"""
    original: bytes | None = None
    repaired = False
    if os.path.exists(path):
        with open(path, "rb") as f:
            original = f.read()
        try:
            doc = parse_descriptor(original)
        except StructuralCorruption:
            doc = kind.template(ctx)
            repaired = True
    else:
        doc = kind.template(ctx)
        repaired = True

    applied = apply_rule_groups(doc, kind.rule_groups(ctx), ctx.flags)
    try:
        data = dump_plist(doc)
    except (TypeError, OverflowError) as e:
        raise PatchError(f"{kind.name} cannot be serialized after patching: {e}") from e
    changed = data != original
    if changed:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)
    return DescriptorResult(doc=doc, repaired=repaired, changed=changed, applied=applied)


def verify_descriptor(path: str, ctx: BuildContext, kind: DescriptorKind) -> list[str]:
    """重新读取并校验：结构合法，且重放全部规则后内容不变。"""
    try:
        with open(path, "rb") as f:
            data = f.read()
        doc = parse_descriptor(data)
    except (OSError, StructuralCorruption) as e:
        return [f"{kind.name}: {e}"]

    replay = copy.deepcopy(doc)
    try:
        apply_rule_groups(replay, kind.rule_groups(ctx), ctx.flags)
    except PatchError as e:
        return [f"{kind.name}: {e}"]
    if dump_plist(replay) != data:
        return [f"{kind.name}: active rules are not satisfied after patching"]
    return []
