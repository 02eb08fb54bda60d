from pathlib import Path

import pytest
from PIL import Image

from buildprep.errors import SourceImageError
from buildprep.icon_table import ANDROID_TABLE, IOS_TABLE
from buildprep.icons import generate_icon_set, quality_warning, read_source_image
from buildprep.image_tools import ImageAdapter, PillowTool, ResizeTool, measure
from buildprep.types import SourceImage


def _write_source(path: Path, size: int = 1200, mode: str = "RGBA") -> None:
    color = (10, 120, 200, 128) if mode == "RGBA" else (10, 120, 200)
    Image.new(mode, (size, size), color).save(path)


class _CountingPillow(PillowTool):
    def __init__(self) -> None:
        super().__init__()
        self.rendered: list[int] = []

    def render(self, source, output, width, height, forbid_alpha) -> None:
        self.rendered.append(width)
        super().render(source, output, width, height, forbid_alpha)


class _Broken(ResizeTool):
    name = "broken"

    def available(self) -> bool:
        return True

    def render(self, source, output, width, height, forbid_alpha) -> None:
        raise RuntimeError("tool crashed")


class _SecondChoice(PillowTool):
    name = "second"


def test_rgba_source_yields_full_valid_icon_set(tmp_path) -> None:
    src = tmp_path / "logo.png"
    _write_source(src)
    out_dir = tmp_path / "AppIcon.appiconset"

    source = read_source_image(str(src))
    assert source.has_alpha is True

    res = generate_icon_set(source, IOS_TABLE, str(out_dir), ImageAdapter([PillowTool()]), workers=4)

    assert res.unmet == []
    assert res.marketing_ok is True
    assert len(res.icons) == 15
    for icon in res.icons:
        assert measure(icon.path) == (icon.spec.pixels, icon.spec.pixels, False)
    assert sorted(p.name for p in out_dir.iterdir()) == sorted(s.filename for s in IOS_TABLE.specs)


def test_android_icons_keep_alpha_in_density_dirs(tmp_path) -> None:
    src = tmp_path / "logo.png"
    _write_source(src, size=512)
    res_dir = tmp_path / "res"

    res = generate_icon_set(read_source_image(str(src)), ANDROID_TABLE, str(res_dir), ImageAdapter([PillowTool()]))

    assert res.unmet == []
    assert len(res.icons) == 5
    assert measure(str(res_dir / "mipmap-xxxhdpi" / "ic_launcher.png")) == (192, 192, True)
    assert measure(str(res_dir / "mipmap-mdpi" / "ic_launcher.png")) == (48, 48, True)


def test_valid_existing_icons_are_kept_but_marketing_is_regenerated(tmp_path) -> None:
    src = tmp_path / "logo.png"
    _write_source(src, mode="RGB")
    out_dir = tmp_path / "icons"
    generate_icon_set(read_source_image(str(src)), IOS_TABLE, str(out_dir), ImageAdapter([PillowTool()]))

    tool = _CountingPillow()
    res = generate_icon_set(read_source_image(str(src)), IOS_TABLE, str(out_dir), ImageAdapter([tool]))

    assert len(res.icons) == 15
    assert tool.rendered == [1024]
    assert res.unmet == []


def test_invalid_existing_icon_is_regenerated(tmp_path) -> None:
    src = tmp_path / "logo.png"
    _write_source(src, mode="RGB")
    out_dir = tmp_path / "icons"
    out_dir.mkdir()
    Image.new("RGBA", (10, 10)).save(out_dir / "Icon-App-20x20@2x.png")

    tool = _CountingPillow()
    res = generate_icon_set(read_source_image(str(src)), IOS_TABLE, str(out_dir), ImageAdapter([tool]))

    assert res.unmet == []
    assert measure(str(out_dir / "Icon-App-20x20@2x.png")) == (40, 40, False)


def test_fallback_tool_is_reported(tmp_path) -> None:
    src = tmp_path / "logo.png"
    _write_source(src, size=1024)

    res = generate_icon_set(
        read_source_image(str(src)), IOS_TABLE, str(tmp_path / "icons"), ImageAdapter([_Broken(), _SecondChoice()])
    )

    assert res.unmet == []
    assert [w.code for w in res.warnings] == ["tool_fallback"]
    assert "15 icon(s) produced by fallback tool second" in res.warnings[0].message


def test_all_tools_failing_leaves_every_spec_unmet(tmp_path) -> None:
    src = tmp_path / "logo.png"
    _write_source(src, size=1024)

    res = generate_icon_set(
        read_source_image(str(src)), IOS_TABLE, str(tmp_path / "icons"), ImageAdapter([_Broken()])
    )

    assert res.icons == []
    assert len(res.unmet) == 15
    assert res.marketing_ok is False
    assert "tool crashed" in res.reasons["Icon-App-1024x1024@1x.png"]


def test_read_source_image_errors(tmp_path) -> None:
    with pytest.raises(SourceImageError):
        read_source_image(str(tmp_path / "missing.png"))

    junk = tmp_path / "junk.png"
    junk.write_bytes(b"not an image")
    with pytest.raises(SourceImageError):
        read_source_image(str(junk))


@pytest.mark.parametrize(
    "size,expected",
    [(1024, None), (512, "may affect"), (256, "may affect"), (128, "will affect")],
)
def test_quality_warning_tiers(size: int, expected) -> None:
    warning = quality_warning(SourceImage(path="x.png", width=size, height=size, has_alpha=False))
    if expected is None:
        assert warning is None
    else:
        assert warning.code == "low_resolution"
        assert expected in warning.message
