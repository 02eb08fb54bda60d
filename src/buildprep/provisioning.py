"""
签名描述文件（`mobileprovision`）解码辅助模块。

`.mobileprovision` 本质是 CMS 封装的 plist。优先直接截取其中内嵌的 XML plist，
截取不到时再回退到 macOS 的 `security cms -D -i`。
"""

from __future__ import annotations

import hashlib
import plistlib
import re
from dataclasses import dataclass, field
from typing import Any
from xml.parsers.expat import ExpatError

from .errors import ProfileError
from .pipeline_utils import find_tool, run_cmd

_IDENTIFIER_KEYS = (
    "application-identifier",
    "com.apple.application-identifier",
    "com.apple.developer.team-identifier",
)
_IDENTITY_LINE_RE = re.compile(r'^\s*\d+\)\s+([0-9A-Fa-f]{40})\s+"(.+)"\s*$')


@dataclass(frozen=True)
class DecodedProfile:
    """描述已解码签名描述文件的关键信息。"""

    uuid: str
    name: str
    team_id: str
    # 去掉 Team ID 前缀后的应用标识，可能是通配符（如 `com.acme.*`）。
    app_id_pattern: str
    capabilities: tuple[str, ...]
    entitlements: dict[str, Any] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def is_wildcard(self) -> bool:
        return self.app_id_pattern.endswith("*")


def extract_embedded_plist(blob: bytes) -> bytes:
    """从 CMS 数据中截取内嵌的 XML plist，找不到时返回空字节串。"""
    start = blob.find(b"<?xml")
    if start < 0:
        return b""
    end = blob.find(b"</plist>", start)
    if end < 0:
        return b""
    return blob[start:end + len(b"</plist>")]


def profile_from_plist(raw: Any) -> DecodedProfile:
    """从解码后的 plist 字典提取 UUID、Team ID、应用标识与权限列表。"""
    if not isinstance(raw, dict):
        raise ProfileError("provisioning profile payload is not a dict")
    ents = raw.get("Entitlements")
    if not isinstance(ents, dict):
        ents = {}

    app_id = ents.get("application-identifier") or ents.get("com.apple.application-identifier")
    if not isinstance(app_id, str):
        app_id = ""

    team_id = ""
    v = ents.get("com.apple.developer.team-identifier")
    if isinstance(v, str) and v:
        team_id = v
    if not team_id:
        teams = raw.get("TeamIdentifier")
        if isinstance(teams, list) and teams and isinstance(teams[0], str):
            team_id = teams[0]
    if not team_id and "." in app_id:
        team_id = app_id.split(".", 1)[0]
    if not team_id:
        raise ProfileError("Failed to extract team id from provisioning profile")

    uuid = raw.get("UUID")
    if not isinstance(uuid, str) or not uuid:
        raise ProfileError("Provisioning profile has no UUID")

    pattern = app_id.split(".", 1)[1] if "." in app_id else ""
    name = raw.get("Name") if isinstance(raw.get("Name"), str) else ""
    return DecodedProfile(
        uuid=uuid,
        name=name,
        team_id=team_id,
        app_id_pattern=pattern,
        capabilities=tuple(sorted(k for k in ents if k not in _IDENTIFIER_KEYS)),
        entitlements=ents,
        raw=raw,
    )


def decode_profile(path: str, *, verbose: bool = False) -> DecodedProfile:
    """读取并解码 `.mobileprovision`。"""
    try:
        with open(path, "rb") as f:
            blob = f.read()
    except OSError as e:
        raise ProfileError(f"cannot read provisioning profile {path}: {e}") from e

    data = extract_embedded_plist(blob)
    if not data:
        security = find_tool("security")
        if not security:
            raise ProfileError(
                f"no embedded plist in {path} and `security` is not available to decode it"
            )
        try:
            data = run_cmd([security, "cms", "-D", "-i", path], verbose=verbose)
        except RuntimeError as e:
            raise ProfileError(str(e)) from e

    try:
        raw = plistlib.loads(data)
    except (ValueError, ExpatError) as e:
        raise ProfileError(f"provisioning profile payload is not a plist: {e}") from e
    return profile_from_plist(raw)


def profile_certificate_sha1s(profile: DecodedProfile) -> list[str]:
    """从 profile 的 `DeveloperCertificates` 提取证书 SHA1（大写十六进制）。"""
    certs = profile.raw.get("DeveloperCertificates")
    if not isinstance(certs, list):
        return []

    # 同一证书可能重复出现，按首次出现顺序去重。
    hashes = (hashlib.sha1(bytes(c)).hexdigest().upper() for c in certs if isinstance(c, (bytes, bytearray)))
    return list(dict.fromkeys(hashes))


def list_codesigning_identities() -> list[tuple[str, str]]:
    """列出钥匙串中可用于 codesign 的身份 `(sha1, name)`；无 `security` 时返回空列表。"""
    security = find_tool("security")
    if not security:
        return []
    text = run_cmd([security, "find-identity", "-v", "-p", "codesigning"]).decode(errors="replace")
    out: list[tuple[str, str]] = []
    for line in text.splitlines():
        m = _IDENTITY_LINE_RE.match(line.strip())
        if m:
            out.append((m.group(1).upper(), m.group(2)))
    return out


def resolve_sign_identity(profile: DecodedProfile) -> str:
    """根据 profile 选择签名身份：优先钥匙串中的名称，否则回退为证书 SHA1。"""
    cert_hashes = profile_certificate_sha1s(profile)
    if not cert_hashes:
        return ""
    try:
        identities = list_codesigning_identities()
    except RuntimeError:
        identities = []
    by_hash = {fingerprint: name for fingerprint, name in identities}
    for cert_hash in cert_hashes:
        name = by_hash.get(cert_hash)
        if name:
            return name
    return cert_hashes[0]
