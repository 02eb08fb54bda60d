"""
`buildprep` 的命令行入口模块。

先从 CI 环境变量构建上下文，再用命令行参数覆盖，最后调用
`buildprep.pipeline.run_pipeline` 并输出就绪报告。
"""

import argparse
import contextlib
import json
import os
import sys
from collections.abc import Sequence

from . import config
from .descriptor import FEATURE_FLAGS
from .icon_table import TABLES
from .image_tools import DEFAULT_ORDER, TOOLS, default_adapter
from .pipeline import ReadinessReport, run_pipeline
from .pipeline_utils import log_step
from .signing import KeychainStore
from .types import BuildContext, PatchRule


def _add_rule(rules: list[PatchRule], kind: str, spec: str) -> None:
    """将一条命令行参数规范转换为 `PatchRule` 并追加到列表。"""
    if kind == "delete":
        if not spec:
            raise SystemExit(f"Error: missing KEY_PATH for {kind}")
        rules.append(PatchRule(kind=kind, key_path=spec))
        return

    if "=" not in spec:
        raise SystemExit(f"Error: expected KEY_PATH=VALUE, got: {spec}")
    k, v = spec.split("=", 1)
    if not k:
        raise SystemExit(f"Error: empty KEY_PATH in: {spec}")
    if kind == "set_int":
        try:
            value: object = int(v, 10)
        except ValueError as e:
            raise SystemExit(f"Error: invalid int for {k}: {v}") from e
    elif kind == "set_bool":
        try:
            value = config.parse_flag(v)
        except ValueError as e:
            raise SystemExit(f"Error: invalid bool for {k}: {v}") from e
    else:
        value = v
    rules.append(PatchRule(kind=kind, key_path=k, value=value))


def _parse_rules(ns: argparse.Namespace) -> list[PatchRule]:
    rules: list[PatchRule] = []
    for attr, kind in (
        ("set", "set_string"),
        ("set_int", "set_int"),
        ("set_bool", "set_bool"),
        ("delete", "delete"),
        ("array_add", "array_add"),
        ("array_remove", "array_remove"),
    ):
        for spec in getattr(ns, attr):
            _add_rule(rules, kind, spec)
    return rules


def build_parser() -> argparse.ArgumentParser:
    """构建并返回 `buildprep` 命令行参数解析器。"""
    p = argparse.ArgumentParser(
        prog="buildprep",
        formatter_class=argparse.RawTextHelpFormatter,
        description=(
            "Prepare an iOS project for compile and sign: app icon set, Contents.json,\n"
            "Info.plist / entitlements keys and signing credentials.\n"
            "Values default to the CI environment (BUNDLE_ID, APP_NAME, PROFILE_URL, IS_CAMERA, ...);\n"
            "command line flags override them."
        ),
    )

    p.add_argument("-C", "--project-root", default=".", help="Project root (default: current directory)")
    p.add_argument("-l", "--logo", default="", help="Source image path or URL (env: LOGO_PATH)")
    p.add_argument("--platform", default="ios", choices=sorted(TABLES), help="Icon table to generate")
    p.add_argument(
        "--icon-dir", default="", help="Icon set directory (relative to project root, default per platform)"
    )
    p.add_argument("--info-plist", default="", help="Info.plist path (relative to project root)")
    p.add_argument(
        "-e",
        "--entitlements",
        default="",
        help="Entitlements plist to patch (default: ios/Runner/Runner.entitlements when present)",
    )
    p.add_argument("--backup-dir", default="", help="Backup directory (relative to project root)")
    p.add_argument("--work-dir", default="", help="Keep fetched artifacts (including credentials) here instead of a temp dir")

    p.add_argument("-b", "--bundle-id", default="", help="CFBundleIdentifier (env: BUNDLE_ID)")
    p.add_argument("-d", "--display-name", default="", help="CFBundleDisplayName / CFBundleName (env: APP_NAME)")
    p.add_argument("-v", "--version", default="", help="CFBundleShortVersionString (env: VERSION_NAME)")
    p.add_argument("-n", "--build", default="", help="CFBundleVersion (env: VERSION_CODE)")
    p.add_argument("-t", "--team-id", default="", help="Apple team id (env: APPLE_TEAM_ID)")
    p.add_argument("--profile-type", default="", help="app-store / ad-hoc / development (env: PROFILE_TYPE)")
    p.add_argument(
        "--enable",
        action="append",
        default=[],
        metavar="FLAG",
        help=f"Enable a feature flag, repeatable ({', '.join(FEATURE_FLAGS)})",
    )

    p.add_argument("-p", "--profile", default="", help="Provisioning profile path or URL (env: PROFILE_URL)")
    p.add_argument("--p12", default="", help="PKCS#12 certificate path or URL (env: CERT_P12_URL)")
    p.add_argument("--cert", default="", help="Certificate (.cer) path or URL (env: CERT_CER_URL)")
    p.add_argument("--key", default="", help="Private key path or URL (env: CERT_KEY_URL)")
    p.add_argument("--password", default="", help="Certificate password (env: CERT_PASSWORD)")
    p.add_argument(
        "--no-register",
        action="store_true",
        help="Resolve credentials but do not import them into the keychain",
    )

    p.add_argument(
        "--image-tool",
        action="append",
        default=[],
        choices=sorted(TOOLS),
        help=f"Resize tool order, repeatable (default: {' -> '.join(DEFAULT_ORDER)})",
    )
    p.add_argument("--workers", type=int, default=4, help="Parallel icon workers (default: 4)")
    p.add_argument("--timeout", type=float, default=60.0, help="Network fetch timeout in seconds")
    p.add_argument("--json", action="store_true", help="Print the readiness report as JSON")
    p.add_argument("--verbose", action="store_true", help="Verbose logging")

    p.add_argument("--set", action="append", default=[], metavar="KEY_PATH=VALUE",
                   help="Set Info.plist value as string")
    p.add_argument("--set-int", action="append", default=[], metavar="KEY_PATH=VALUE",
                   help="Set Info.plist value as integer")
    p.add_argument("--set-bool", action="append", default=[], metavar="KEY_PATH=VALUE",
                   help="Set Info.plist value as bool (true/false/1/0)")
    p.add_argument("--delete", action="append", default=[], metavar="KEY_PATH",
                   help="Delete Info.plist key/path")
    p.add_argument("--array-add", action="append", default=[], metavar="KEY_PATH=VALUE",
                   help="Add a string element to an array at KEY_PATH (if absent)")
    p.add_argument("--array-remove", action="append", default=[], metavar="KEY_PATH=VALUE",
                   help="Remove string elements matching VALUE from array at KEY_PATH")

    return p


def build_context(ns: argparse.Namespace, environ=None) -> BuildContext:
    """环境变量打底，命令行参数覆盖。"""
    root = os.path.abspath(os.path.expanduser(ns.project_root))
    if not os.path.isdir(root):
        raise SystemExit(f"Error: project root not found: {root}")
    try:
        ctx = config.context_from_env(environ, project_root=root)
    except ValueError as e:
        raise SystemExit(f"Error: {e}") from e

    overrides = {
        "source_image": ns.logo,
        "icon_dir": ns.icon_dir,
        "info_plist": ns.info_plist,
        "entitlements_plist": ns.entitlements,
        "backup_dir": ns.backup_dir,
        "work_dir": ns.work_dir,
        "bundle_id": ns.bundle_id,
        "display_name": ns.display_name,
        "version_name": ns.version,
        "build_number": ns.build,
        "team_id": ns.team_id,
        "profile_type": ns.profile_type,
    }
    for name, value in overrides.items():
        if value:
            setattr(ctx, name, value)
    ctx.platform = ns.platform

    for name in ("profile", "p12", "cert", "key", "password"):
        value = getattr(ns, name)
        if value:
            setattr(ctx.signing, name, value)

    for flag in ns.enable:
        flag = flag.strip().lower()
        if flag not in FEATURE_FLAGS:
            raise SystemExit(f"Error: unknown feature flag: {flag} (choose from {', '.join(FEATURE_FLAGS)})")
        ctx.flags.add(flag)

    ctx.extra_rules = _parse_rules(ns)

    if not ctx.source_image:
        raise SystemExit(
            "Error: missing source image.\n"
            "Hint: pass -l/--logo or set LOGO_PATH.\n"
        )
    return ctx


def print_report(report: ReadinessReport) -> None:
    """输出人类可读的就绪报告摘要。"""
    if report.success:
        log_step("Ready for compile and sign")
    elif report.failed_component:
        log_step(f"Not ready: {report.failed_component} failed: {report.failure_reason}")
    else:
        log_step("Not ready: some icon specs are unmet")
    for name in report.unmet_specs:
        log_step(f"  unmet: {name}")
    for w in report.warnings:
        log_step(f"  warning [{w.component}/{w.code}]: {w.message}")
    for key, value in report.identifiers.items():
        if value:
            log_step(f"  {key}: {value}")


def main(argv: Sequence[str] | None = None) -> int:
    """CLI 入口：解析参数、构建上下文并运行准备流程。"""
    parser = build_parser()
    ns = parser.parse_args(argv)
    if ns.workers < 1:
        raise SystemExit("Error: --workers must be >= 1")

    ctx = build_context(ns)
    adapter = default_adapter(ns.image_tool or None, verbose=bool(ns.verbose))
    store = None if ns.no_register else KeychainStore(verbose=bool(ns.verbose))

    # --json 时 stdout 只留给报告，进度日志改走 stderr。
    log_stream = sys.stderr if ns.json else sys.stdout
    with contextlib.redirect_stdout(log_stream):
        log_step(f"Project root: {ctx.project_root}")
        report = run_pipeline(
            ctx,
            adapter=adapter,
            store=store,
            workers=ns.workers,
            fetch_timeout=ns.timeout,
            verbose=bool(ns.verbose),
        )
    if ns.json:
        print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
    else:
        print_report(report)
    return 0 if report.success else 1
