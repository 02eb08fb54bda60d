import hashlib
import plistlib

import pytest

from buildprep import provisioning
from buildprep.errors import ProfileError
from buildprep.provisioning import DecodedProfile, decode_profile, profile_from_plist


def _profile_payload(**overrides) -> dict:
    payload = {
        "UUID": "11111111-2222-3333-4444-555555555555",
        "Name": "Acme App Store",
        "TeamIdentifier": ["TEAM123"],
        "DeveloperCertificates": [b"cert"],
        "Entitlements": {
            "application-identifier": "TEAM123.com.acme.app",
            "com.apple.developer.team-identifier": "TEAM123",
            "aps-environment": "production",
            "get-task-allow": False,
        },
    }
    payload.update(overrides)
    return payload


def _write_cms_like(path, payload: dict) -> None:
    path.write_bytes(b"0\x82\x0b\x1f\x06\t*\x86H" + plistlib.dumps(payload) + b"\x00\xa0\x82signature")


def _decoded(raw: dict) -> DecodedProfile:
    return DecodedProfile(
        uuid="U", name="", team_id="TEAM123", app_id_pattern="com.acme.app", capabilities=(), raw=raw
    )


def test_decode_profile_reads_embedded_plist(tmp_path) -> None:
    path = tmp_path / "profile.mobileprovision"
    _write_cms_like(path, _profile_payload())

    profile = decode_profile(str(path))

    assert profile.uuid == "11111111-2222-3333-4444-555555555555"
    assert profile.team_id == "TEAM123"
    assert profile.app_id_pattern == "com.acme.app"
    assert profile.is_wildcard is False
    assert profile.capabilities == ("aps-environment", "get-task-allow")


def test_decode_profile_falls_back_to_security(monkeypatch, tmp_path) -> None:
    path = tmp_path / "profile.mobileprovision"
    path.write_bytes(b"\x30\x82binary-only")
    calls: list[list[str]] = []

    def fake_run_cmd(cmd, verbose=False):
        calls.append(cmd)
        return plistlib.dumps(_profile_payload())

    monkeypatch.setattr(provisioning, "find_tool", lambda *_names: "/usr/bin/security")
    monkeypatch.setattr(provisioning, "run_cmd", fake_run_cmd)

    profile = decode_profile(str(path))

    assert calls == [["/usr/bin/security", "cms", "-D", "-i", str(path)]]
    assert profile.team_id == "TEAM123"


def test_decode_profile_without_plist_or_security(monkeypatch, tmp_path) -> None:
    path = tmp_path / "profile.mobileprovision"
    path.write_bytes(b"garbage")
    monkeypatch.setattr(provisioning, "find_tool", lambda *_names: "")

    with pytest.raises(ProfileError):
        decode_profile(str(path))


def test_profile_from_plist_wildcard_and_team_fallbacks() -> None:
    raw = _profile_payload(
        TeamIdentifier=[],
        Entitlements={"application-identifier": "TEAMX.com.acme.*"},
    )

    profile = profile_from_plist(raw)

    assert profile.team_id == "TEAMX"
    assert profile.app_id_pattern == "com.acme.*"
    assert profile.is_wildcard is True


def test_profile_from_plist_requires_uuid_and_team() -> None:
    with pytest.raises(ProfileError):
        profile_from_plist(_profile_payload(UUID=""))
    with pytest.raises(ProfileError):
        profile_from_plist(_profile_payload(TeamIdentifier=[], Entitlements={}))
    with pytest.raises(ProfileError):
        profile_from_plist(["not", "a", "dict"])


def test_profile_certificate_sha1s_extracts_unique_hashes() -> None:
    cert_a = b"cert-a"
    cert_b = b"cert-b"
    profile = _decoded({"DeveloperCertificates": [cert_a, cert_b, cert_a, "skip"]})

    got = provisioning.profile_certificate_sha1s(profile)
    assert got == [
        hashlib.sha1(cert_a).hexdigest().upper(),
        hashlib.sha1(cert_b).hexdigest().upper(),
    ]


def test_list_codesigning_identities_parses_security_output(monkeypatch) -> None:
    monkeypatch.setattr(provisioning, "find_tool", lambda *_names: "/usr/bin/security")
    monkeypatch.setattr(
        provisioning,
        "run_cmd",
        lambda _cmd: (
            b'  1) ABCDEF0123456789ABCDEF0123456789ABCDEF01 "Apple Distribution: A (TEAM)"\n'
            b"  2) not-a-match\n"
            b'  3) 00112233445566778899AABBCCDDEEFF00112233 "Apple Development: B (TEAM)"\n'
        ),
    )

    assert provisioning.list_codesigning_identities() == [
        ("ABCDEF0123456789ABCDEF0123456789ABCDEF01", "Apple Distribution: A (TEAM)"),
        ("00112233445566778899AABBCCDDEEFF00112233", "Apple Development: B (TEAM)"),
    ]


def test_resolve_sign_identity_prefers_keychain_name(monkeypatch) -> None:
    cert = b"cert"
    cert_hash = hashlib.sha1(cert).hexdigest().upper()
    monkeypatch.setattr(
        provisioning,
        "list_codesigning_identities",
        lambda: [(cert_hash, "Apple Distribution: Example (TEAM123)")],
    )

    assert provisioning.resolve_sign_identity(_decoded({"DeveloperCertificates": [cert]})) == (
        "Apple Distribution: Example (TEAM123)"
    )


def test_resolve_sign_identity_falls_back_to_hash(monkeypatch) -> None:
    cert = b"cert"

    def broken():
        raise RuntimeError("security failed")

    monkeypatch.setattr(provisioning, "list_codesigning_identities", broken)

    got = provisioning.resolve_sign_identity(_decoded({"DeveloperCertificates": [cert]}))
    assert got == hashlib.sha1(cert).hexdigest().upper()
    assert provisioning.resolve_sign_identity(_decoded({})) == ""
