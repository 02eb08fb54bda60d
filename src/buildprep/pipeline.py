from __future__ import annotations

"""
Build-preparation pipeline.

High-level flow (strictly sequential, one component at a time):
1) Icons: fetch/measure the source image, back up the icon set and generate
   every spec of the platform table (parallel inside this step only).
2) Manifest: back up `Contents.json`, rewrite it from the table when it is
   corrupt or not canonical, then check it against the generated icons.
3) Descriptor: back up `Info.plist` (and the entitlements plist when
   configured), apply the feature rule groups, then verify by replay.
4) Credentials: fetch certificate + profile, normalize, decode, reconcile
   with the Build Context, then hand them to the credential store.

Steps 2-4 only exist for the iOS table; other platforms stop after icons.

Every fatal error restores all backups taken during the run (newest first)
and the report names the failing component. Backups are dropped only after
the whole run succeeded.
"""

import enum
import os
import tempfile
from dataclasses import dataclass, field
from typing import Any

from .backup import BackupHandle, create_backup, remove_empty_dir
from .descriptor import ENTITLEMENTS, INFO_PLIST, DescriptorKind, patch_descriptor, verify_descriptor
from .errors import BuildPrepError, VerificationFailure
from .fetch import fetch_artifact, is_remote
from .icon_table import get_table
from .icons import generate_icon_set, quality_warning, read_source_image
from .image_tools import ImageAdapter, default_adapter
from .manifest import build_manifest, check_bijection, load_manifest, sync_manifest
from .pipeline_utils import log_step
from .provisioning import resolve_sign_identity
from .signing import CredentialResolver, CredentialStore
from .types import BuildContext, GeneratedIcon, PipelineWarning

MANIFEST_NAME = "Contents.json"


class Stage(enum.Enum):
    PENDING = "pending"
    ICONS = "icons"
    MANIFEST = "manifest"
    DESCRIPTOR = "descriptor"
    CREDENTIALS = "credentials"
    REGISTER = "register"
    DONE = "done"
    FAILED = "failed"


# The register step belongs to the credential resolver for reporting purposes.
_COMPONENT_BY_STAGE = {Stage.REGISTER: "credentials"}


@dataclass
class ReadinessReport:
    """The single structured outcome handed to the compile/sign stage."""

    success: bool
    failed_component: str = ""
    failure_reason: str = ""
    unmet_specs: list[str] = field(default_factory=list)
    warnings: list[PipelineWarning] = field(default_factory=list)
    manifest: dict[str, Any] | None = None
    identifiers: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "failed_component": self.failed_component,
            "failure_reason": self.failure_reason,
            "unmet_specs": list(self.unmet_specs),
            "warnings": [w.to_dict() for w in self.warnings],
            "manifest": self.manifest,
            "identifiers": dict(self.identifiers),
        }


class Pipeline:
    def __init__(
        self,
        ctx: BuildContext,
        *,
        adapter: ImageAdapter | None = None,
        store: CredentialStore | None = None,
        workers: int = 4,
        fetch_timeout: float = 60.0,
        verbose: bool = False,
    ) -> None:
        self.ctx = ctx
        self.adapter = adapter or default_adapter(verbose=verbose)
        self.store = store
        self.workers = workers
        self.fetch_timeout = fetch_timeout
        self.verbose = verbose
        self.table = get_table(ctx.platform)
        self.stage = Stage.PENDING
        self.warnings: list[PipelineWarning] = []
        self.unmet: list[str] = []
        self.icons: list[GeneratedIcon] = []
        self.manifest: dict[str, Any] | None = None
        self._backups: list[BackupHandle] = []
        self._work_dir = ""
        # 凭据阶段开始前的标识；该阶段失败并恢复备份后，报告沿用这份快照。
        self._identifiers_before_credentials: dict[str, str] | None = None

    # -- helpers ---------------------------------------------------------

    def _enter(self, stage: Stage) -> None:
        self.stage = stage
        log_step(f"Stage: {stage.value}")

    def _warn(self, code: str, component: str, message: str) -> None:
        log_step(f"Warning: {message}")
        self.warnings.append(PipelineWarning(code=code, component=component, message=message))

    def _backup(self, target: str) -> BackupHandle:
        handle = create_backup(target, self.ctx.resolve(self.ctx.backup_dir))
        self._backups.append(handle)
        if self.verbose and handle.existed:
            log_step(f"Backup: {target} -> {handle.backup_path}")
        return handle

    def _restore_all(self) -> None:
        for handle in reversed(self._backups):
            handle.restore()
            log_step(f"Restored: {handle.target}")
        self._discard_all()

    def _discard_all(self) -> None:
        for handle in self._backups:
            handle.discard()
        self._backups.clear()
        remove_empty_dir(self.ctx.resolve(self.ctx.backup_dir))

    @property
    def icon_dir(self) -> str:
        return self.ctx.resolve(self.ctx.icon_dir or self.table.default_dir)

    def _descriptor_targets(self) -> list[tuple[DescriptorKind, str]]:
        targets = [(INFO_PLIST, self.ctx.resolve(self.ctx.info_plist))]
        if self.ctx.entitlements_plist:
            targets.append((ENTITLEMENTS, self.ctx.resolve(self.ctx.entitlements_plist)))
        return targets

    # -- steps -----------------------------------------------------------

    def _run_icons(self) -> None:
        self._enter(Stage.ICONS)
        source_path = self.ctx.source_image
        if is_remote(source_path):
            ext = os.path.splitext(source_path.split("?", 1)[0])[1] or ".png"
            source_path = fetch_artifact(
                source_path, os.path.join(self._work_dir, f"source{ext}"), timeout=self.fetch_timeout
            )
        source = read_source_image(self.ctx.resolve(source_path))
        log_step(f"Source image: {source.width}x{source.height} alpha={source.has_alpha}")
        warning = quality_warning(source)
        if warning is not None:
            self._warn(warning.code, warning.component, warning.message)

        self._backup(self.icon_dir)
        res = generate_icon_set(
            source, self.table, self.icon_dir, self.adapter, workers=self.workers, verbose=self.verbose
        )
        for w in res.warnings:
            self._warn(w.code, w.component, w.message)
        self.icons = res.icons
        self.unmet = res.unmet
        for name in res.unmet:
            log_step(f"Unmet icon spec: {name}: {res.reasons.get(name, 'invalid output')}")
        log_step(f"Icons: {len(res.icons)}/{len(self.table.specs)} valid")

        marketing = self.table.marketing.filename
        if not res.marketing_ok:
            raise VerificationFailure(
                f"marketing icon {marketing} is invalid: {res.reasons.get(marketing, 'invalid output')}"
            )

    def _run_manifest(self) -> None:
        self._enter(Stage.MANIFEST)
        path = os.path.join(self.icon_dir, MANIFEST_NAME)
        self._backup(path)
        result = sync_manifest(path, self.table)
        if result.repaired:
            self._warn("manifest_repaired", "manifest", f"{MANIFEST_NAME} was corrupt and has been replaced")
        self.manifest = result.manifest

        reloaded = load_manifest(path)
        if reloaded != build_manifest(self.table):
            raise VerificationFailure(f"{MANIFEST_NAME} does not match the icon table after writing")
        bijection = check_bijection(reloaded, self.icons, self.table.forbid_alpha)
        unexpected = bijection.unlisted_icons or bijection.duplicates
        if unexpected or set(bijection.missing_icons) != set(self.unmet):
            raise VerificationFailure("; ".join(bijection.problems()))

    def _patch_descriptors(self, *, backup: bool) -> None:
        for kind, path in self._descriptor_targets():
            if backup:
                self._backup(path)
            result = patch_descriptor(path, self.ctx, kind)
            if result.repaired:
                self._warn(
                    "descriptor_repaired",
                    "descriptor",
                    f"{kind.name} was missing or corrupt and has been rebuilt from the template",
                )
            problems = verify_descriptor(path, self.ctx, kind)
            if problems:
                raise VerificationFailure("; ".join(problems))
            state = "updated" if result.changed else "unchanged"
            log_step(f"{kind.name} {state} (groups: {', '.join(result.applied)})")

    def _run_descriptors(self) -> None:
        self._enter(Stage.DESCRIPTOR)
        self._patch_descriptors(backup=True)

    def _run_credentials(self) -> None:
        self._enter(Stage.CREDENTIALS)
        self._identifiers_before_credentials = self.ctx.identifiers()
        if self.ctx.signing.is_empty():
            self._warn("signing_not_configured", "credentials", "no signing sources configured")
            return

        bundle_before = self.ctx.bundle_id
        resolver = CredentialResolver(
            self.ctx, self._work_dir, timeout=self.fetch_timeout, verbose=self.verbose
        )
        resolved = resolver.resolve()
        for w in resolver.warnings:
            self._warn(w.code, w.component, w.message)

        if self.ctx.bundle_id != bundle_before:
            # Identity rules depend on the bundle id: replay them on the
            # already backed-up descriptors.
            self._enter(Stage.DESCRIPTOR)
            self._patch_descriptors(backup=False)

        self._enter(Stage.REGISTER)
        if self.store is None:
            self._warn("credentials_not_registered", "credentials", "no credential store configured")
            self.ctx.code_sign_identity = resolve_sign_identity(resolved.profile)
            return
        self.store.register(
            resolved.credential_path, resolved.password, resolved.profile_path, resolved.profile.uuid
        )
        resolver.mark_registered()

    # -- entry point -----------------------------------------------------

    def _report(
        self,
        success: bool,
        component: str = "",
        reason: str = "",
        identifiers: dict[str, str] | None = None,
    ) -> ReadinessReport:
        return ReadinessReport(
            success=success,
            failed_component=component,
            failure_reason=reason,
            unmet_specs=list(self.unmet),
            warnings=list(self.warnings),
            manifest=self.manifest,
            identifiers=identifiers if identifiers is not None else self.ctx.identifiers(),
        )

    def _run_steps(self) -> None:
        self._run_icons()
        if self.table.platform != "ios":
            # Contents.json, Info.plist and signing belong to the iOS project only.
            log_step(f"Platform {self.table.platform}: icons only")
            return
        self._run_manifest()
        self._run_descriptors()
        self._run_credentials()

    def run(self) -> ReadinessReport:
        with tempfile.TemporaryDirectory(prefix="buildprep_") as td:
            self._work_dir = self.ctx.resolve(self.ctx.work_dir) if self.ctx.work_dir else td
            os.makedirs(self._work_dir, exist_ok=True)
            try:
                self._run_steps()
            except (BuildPrepError, OSError) as e:
                component = _COMPONENT_BY_STAGE.get(self.stage, self.stage.value)
                log_step(f"Failed in {component}: {e}")
                self._restore_all()
                self.stage = Stage.FAILED
                return self._report(False, component, str(e), self._identifiers_before_credentials)

        self._discard_all()
        self.stage = Stage.DONE
        # Unmet specs are data, not an exception, but they still block readiness.
        success = not self.unmet
        return self._report(success, "", "")


def run_pipeline(
    ctx: BuildContext,
    *,
    adapter: ImageAdapter | None = None,
    store: CredentialStore | None = None,
    workers: int = 4,
    fetch_timeout: float = 60.0,
    verbose: bool = False,
) -> ReadinessReport:
    """Run every step against `ctx` and return the readiness report."""
    return Pipeline(
        ctx,
        adapter=adapter,
        store=store,
        workers=workers,
        fetch_timeout=fetch_timeout,
        verbose=verbose,
    ).run()
