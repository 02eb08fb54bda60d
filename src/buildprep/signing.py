"""
签名材料解析：获取证书与描述文件、统一证书格式、解码标识并与构建上下文对账。

状态流转：Unresolved → Fetched → Normalized → Decoded → Reconciled → Registered。
获取失败没有任何回退，直接中止流程；注册由编排器调用外部凭据存储完成。
"""

from __future__ import annotations

import enum
import os
import shutil
from dataclasses import dataclass
from fnmatch import fnmatchcase

from .errors import CredentialError
from .fetch import fetch_artifact
from .pipeline_utils import find_tool, log_step, run_cmd
from .provisioning import DecodedProfile, decode_profile, resolve_sign_identity
from .types import BuildContext, PipelineWarning

COMPONENT = "credentials"

# 模板工程里常见的默认 bundle id，遇到时视为“未配置”。
PLACEHOLDER_BUNDLE_IDS = (
    "com.example.sampleprojects.sampleProject",
    "com.test.app",
    "com.example.quikapp",
    "com.example.quikappflutter",
)

DEFAULT_PROFILES_DIR = os.path.join("~", "Library", "MobileDevice", "Provisioning Profiles")


class CredentialState(enum.Enum):
    UNRESOLVED = "unresolved"
    FETCHED = "fetched"
    NORMALIZED = "normalized"
    DECODED = "decoded"
    RECONCILED = "reconciled"
    REGISTERED = "registered"


def _is_pem(path: str) -> bool:
    with open(path, "rb") as f:
        return b"-----BEGIN" in f.read(4096)


def normalize_credential(
    *,
    p12_path: str,
    cert_path: str,
    key_path: str,
    password: str,
    work_dir: str,
) -> str:
    """返回单文件 PKCS#12 证书路径；证书+私钥形式会用 openssl 合并。"""
    if p12_path:
        if not password:
            raise CredentialError("a password is required for the .p12 certificate")
        return p12_path
    if not (cert_path and key_path):
        raise CredentialError("no certificate supplied: need a .p12 or a certificate + key pair")

    openssl = find_tool("openssl")
    if not openssl:
        raise CredentialError("openssl is required to convert certificate + key into .p12")

    pem = cert_path
    out = os.path.join(work_dir, "certificate.p12")
    try:
        if not _is_pem(cert_path):
            pem = os.path.join(work_dir, "certificate.pem")
            run_cmd([openssl, "x509", "-inform", "DER", "-in", cert_path, "-out", pem])
        # 命令行含密码，不走 verbose 回显。
        run_cmd([
            openssl, "pkcs12", "-export",
            "-in", pem, "-inkey", key_path,
            "-out", out, "-passout", f"pass:{password}",
        ])
    except (RuntimeError, OSError) as e:
        raise CredentialError(f"certificate conversion failed: {e}") from e
    return out


def bundle_id_matches(bundle_id: str, pattern: str) -> bool:
    return fnmatchcase(bundle_id, pattern)


def reconcile_context(ctx: BuildContext, profile: DecodedProfile) -> list[PipelineWarning]:
    """用描述文件中的标识补全或核对上下文，返回非致命警告。"""
    warnings: list[PipelineWarning] = []
    pattern = profile.app_id_pattern

    if not ctx.bundle_id or ctx.bundle_id in PLACEHOLDER_BUNDLE_IDS:
        if pattern and not profile.is_wildcard:
            log_step(f"Using bundle id from provisioning profile: {pattern}")
            ctx.bundle_id = pattern
        else:
            warnings.append(PipelineWarning(
                code="bundle_id_unresolved",
                component=COMPONENT,
                message=(
                    f"bundle id is {ctx.bundle_id or 'unset'} and the profile app id "
                    f"'{pattern or '<none>'}' cannot replace it"
                ),
            ))
    elif pattern and not bundle_id_matches(ctx.bundle_id, pattern):
        warnings.append(PipelineWarning(
            code="bundle_id_mismatch",
            component=COMPONENT,
            message=f"bundle id {ctx.bundle_id} does not match profile app id {pattern}",
        ))

    if not ctx.team_id:
        ctx.team_id = profile.team_id
    elif ctx.team_id != profile.team_id:
        warnings.append(PipelineWarning(
            code="team_id_mismatch",
            component=COMPONENT,
            message=f"team id {ctx.team_id} differs from profile team {profile.team_id}",
        ))

    ctx.profile_uuid = profile.uuid
    return warnings


@dataclass
class ResolvedCredential:
    credential_path: str
    password: str
    profile_path: str
    profile: DecodedProfile


class CredentialResolver:
    """按固定状态顺序解析签名材料，结果写回构建上下文。"""

    def __init__(
        self, ctx: BuildContext, work_dir: str, *, timeout: float = 60.0, verbose: bool = False
    ) -> None:
        self.ctx = ctx
        self.work_dir = work_dir
        self.timeout = timeout
        self.verbose = verbose
        self.state = CredentialState.UNRESOLVED
        self.warnings: list[PipelineWarning] = []
        self._paths: dict[str, str] = {}
        self._credential_path = ""
        self._profile: DecodedProfile | None = None

    @property
    def profile(self) -> DecodedProfile:
        if self._profile is None:
            raise RuntimeError("provisioning profile has not been decoded yet")
        return self._profile

    def _require(self, expected: CredentialState) -> None:
        if self.state is not expected:
            raise RuntimeError(f"credential resolver is {self.state.value}, expected {expected.value}")

    def fetch(self) -> None:
        self._require(CredentialState.UNRESOLVED)
        src = self.ctx.signing
        if not src.profile:
            raise CredentialError("no provisioning profile source configured")
        wanted = {
            "profile": (src.profile, "profile.mobileprovision"),
            "p12": (src.p12, "certificate.p12"),
            "cert": (src.cert, "certificate.cer"),
            "key": (src.key, "certificate.key"),
        }
        for label, (source, filename) in wanted.items():
            if not source:
                continue
            log_step(f"Fetching {label}")
            self._paths[label] = fetch_artifact(
                source, os.path.join(self.work_dir, filename), timeout=self.timeout
            )
        self.state = CredentialState.FETCHED

    def normalize(self) -> None:
        self._require(CredentialState.FETCHED)
        self._credential_path = normalize_credential(
            p12_path=self._paths.get("p12", ""),
            cert_path=self._paths.get("cert", ""),
            key_path=self._paths.get("key", ""),
            password=self.ctx.signing.password,
            work_dir=self.work_dir,
        )
        self.state = CredentialState.NORMALIZED

    def decode(self) -> None:
        self._require(CredentialState.NORMALIZED)
        self._profile = decode_profile(self._paths["profile"], verbose=self.verbose)
        log_step(f"Profile UUID: {self._profile.uuid} (team {self._profile.team_id})")
        self.state = CredentialState.DECODED

    def reconcile(self) -> None:
        self._require(CredentialState.DECODED)
        self.warnings.extend(reconcile_context(self.ctx, self.profile))
        self.ctx.credential_path = self._credential_path
        self.state = CredentialState.RECONCILED

    def resolve(self) -> ResolvedCredential:
        """依次执行获取、格式统一、解码与对账。"""
        self.fetch()
        self.normalize()
        self.decode()
        self.reconcile()
        return ResolvedCredential(
            credential_path=self._credential_path,
            password=self.ctx.signing.password,
            profile_path=self._paths["profile"],
            profile=self.profile,
        )

    def mark_registered(self) -> None:
        """凭据已交给外部存储；此时钥匙串里才能查到签名身份名称。"""
        self._require(CredentialState.RECONCILED)
        self.ctx.code_sign_identity = resolve_sign_identity(self.profile)
        self.state = CredentialState.REGISTERED


class CredentialStore:
    """平台安全凭据存储的能力接口。"""

    def register(self, credential_path: str, password: str, profile_path: str, uuid: str) -> None:
        raise NotImplementedError


class KeychainStore(CredentialStore):
    """导入到专用钥匙串，并把描述文件安装为 `<UUID>.mobileprovision`。"""

    def __init__(
        self,
        *,
        keychain: str = "buildprep.keychain",
        keychain_password: str = "buildprep",
        profiles_dir: str = DEFAULT_PROFILES_DIR,
        verbose: bool = False,
    ) -> None:
        self.keychain = keychain
        self.keychain_password = keychain_password
        self.profiles_dir = os.path.expanduser(profiles_dir)
        self.verbose = verbose

    def _keychains(self, security: str) -> list[str]:
        out = run_cmd([security, "list-keychains", "-d", "user"]).decode(errors="replace")
        return [line.strip().strip('"') for line in out.splitlines() if line.strip()]

    def register(self, credential_path: str, password: str, profile_path: str, uuid: str) -> None:
        security = find_tool("security")
        if not security:
            raise CredentialError("`security` is required to register signing credentials")
        try:
            keychains = self._keychains(security)
            if not any(k.endswith(self.keychain) or k.endswith(self.keychain + "-db") for k in keychains):
                run_cmd([security, "create-keychain", "-p", self.keychain_password, self.keychain])
                keychains.append(self.keychain)
            run_cmd([security, "unlock-keychain", "-p", self.keychain_password, self.keychain])
            run_cmd([security, "set-keychain-settings", self.keychain])
            run_cmd([security, "list-keychains", "-d", "user", "-s", *keychains])
            run_cmd([
                security, "import", credential_path,
                "-P", password, "-A", "-t", "cert", "-f", "pkcs12", "-k", self.keychain,
            ])
            run_cmd([
                security, "set-key-partition-list", "-S", "apple-tool:,apple:", "-s",
                "-k", self.keychain_password, self.keychain,
            ])
        except RuntimeError as e:
            raise CredentialError(f"keychain import failed: {e}") from e

        os.makedirs(self.profiles_dir, exist_ok=True)
        shutil.copyfile(profile_path, os.path.join(self.profiles_dir, f"{uuid}.mobileprovision"))
        if self.verbose:
            log_step(f"Installed provisioning profile {uuid}")
