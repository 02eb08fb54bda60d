import json

import pytest

from buildprep.errors import StructuralCorruption
from buildprep.icon_table import IOS_TABLE
from buildprep.manifest import (
    build_manifest,
    check_bijection,
    dump_manifest,
    load_manifest,
    manifest_entry,
    sync_manifest,
    write_manifest,
)
from buildprep.types import GeneratedIcon


def _valid_icons(table=IOS_TABLE) -> list[GeneratedIcon]:
    return [
        GeneratedIcon(spec=s, path=s.filename, width=s.pixels, height=s.pixels, has_alpha=False)
        for s in table.specs
    ]


def test_manifest_entry_format() -> None:
    spec = next(s for s in IOS_TABLE.specs if s.size == 83.5)
    assert manifest_entry(spec) == {
        "filename": "Icon-App-83.5x83.5@2x.png",
        "idiom": "ipad",
        "scale": "2x",
        "size": "83.5x83.5",
    }


def test_build_manifest_lists_every_spec() -> None:
    manifest = build_manifest(IOS_TABLE)
    assert manifest["info"] == {"author": "xcode", "version": 1}
    assert [e["filename"] for e in manifest["images"]] == [s.filename for s in IOS_TABLE.specs]
    assert check_bijection(manifest, _valid_icons(), True).ok


def test_sync_manifest_writes_then_is_idempotent(tmp_path) -> None:
    path = tmp_path / "Contents.json"

    first = sync_manifest(str(path), IOS_TABLE)
    data = path.read_bytes()
    second = sync_manifest(str(path), IOS_TABLE)

    assert first.rewritten is True
    assert first.repaired is False
    assert second.rewritten is False
    assert path.read_bytes() == data
    assert b'"author" : "xcode"' in data


@pytest.mark.parametrize(
    "content",
    [
        b"",
        b'{"images": [{"filename": "a.png"',
        b"[]",
        b'{"images": [{"filename": "a.png", "idiom": "iphone"}], "info": {"version": 1}}',
        b'{"images": []}',
        b"\xff\xfe\x00",
    ],
)
def test_corrupt_manifest_is_replaced_whole(tmp_path, content: bytes) -> None:
    path = tmp_path / "Contents.json"
    path.write_bytes(content)

    res = sync_manifest(str(path), IOS_TABLE)

    assert res.repaired is True
    assert load_manifest(str(path)) == build_manifest(IOS_TABLE)


def test_non_canonical_manifest_is_rewritten(tmp_path) -> None:
    path = tmp_path / "Contents.json"
    stale = build_manifest(IOS_TABLE)
    stale["images"] = stale["images"][:3]
    path.write_text(json.dumps(stale))

    res = sync_manifest(str(path), IOS_TABLE)

    assert res.repaired is False
    assert res.rewritten is True
    assert path.read_bytes() == dump_manifest(build_manifest(IOS_TABLE))


def test_load_manifest_rejects_garbage(tmp_path) -> None:
    path = tmp_path / "Contents.json"
    path.write_text("{nope")
    with pytest.raises(StructuralCorruption):
        load_manifest(str(path))


def test_check_bijection_reports_each_direction() -> None:
    manifest = build_manifest(IOS_TABLE)
    manifest["images"].append(dict(manifest["images"][0]))
    icons = _valid_icons()[1:]
    bad = icons[0]
    icons[0] = GeneratedIcon(spec=bad.spec, path=bad.path, width=bad.width, height=bad.height, has_alpha=True)

    res = check_bijection(manifest, icons, True)

    assert res.ok is False
    assert res.missing_icons == sorted([IOS_TABLE.specs[0].filename, IOS_TABLE.specs[1].filename])
    assert res.duplicates == [IOS_TABLE.specs[0].filename]
    assert res.unlisted_icons == []
    assert len(res.problems()) == 3


def test_check_bijection_unlisted_icon(tmp_path) -> None:
    manifest = build_manifest(IOS_TABLE)
    manifest["images"] = manifest["images"][1:]
    write_manifest(str(tmp_path / "Contents.json"), manifest)

    res = check_bijection(load_manifest(str(tmp_path / "Contents.json")), _valid_icons(), True)

    assert res.unlisted_icons == [IOS_TABLE.specs[0].filename]
