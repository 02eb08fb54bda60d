from pathlib import Path

import pytest
from PIL import Image

from buildprep import image_tools
from buildprep.errors import ToolUnavailable, TransformFailed
from buildprep.image_tools import ImageAdapter, PillowTool, ResizeTool, default_adapter, measure


def _rgba_source(path: Path, size: int = 300) -> None:
    img = Image.new("RGBA", (size, size), (255, 0, 0, 0))
    img.paste((0, 128, 255, 255), (size // 4, size // 4, size * 3 // 4, size * 3 // 4))
    img.save(path)


class _FakeTool(ResizeTool):
    def __init__(self, name: str, *, available: bool = True, size_delta: int = 0, keep_alpha: bool = False,
                 error: str = "") -> None:
        super().__init__()
        self.name = name
        self._available = available
        self.size_delta = size_delta
        self.keep_alpha = keep_alpha
        self.error = error
        self.calls = 0

    def available(self) -> bool:
        return self._available

    def render(self, source, output, width, height, forbid_alpha) -> None:
        self.calls += 1
        if self.error:
            raise RuntimeError(self.error)
        mode = "RGBA" if self.keep_alpha else "RGB"
        Image.new(mode, (width + self.size_delta, height)).save(output, format="PNG")


def test_pillow_tool_flattens_alpha(tmp_path) -> None:
    src = tmp_path / "src.png"
    out = tmp_path / "out.png"
    _rgba_source(src)

    PillowTool().render(str(src), str(out), 60, 60, True)

    assert measure(str(out)) == (60, 60, False)
    with Image.open(out) as img:
        # Transparent corners become white.
        assert img.getpixel((0, 0)) == (255, 255, 255)


def test_adapter_returns_bytes_of_first_valid_tool(tmp_path) -> None:
    src = tmp_path / "src.png"
    out = tmp_path / "Icon.png"
    _rgba_source(src)
    first = _FakeTool("first")
    second = _FakeTool("second")

    data = ImageAdapter([first, second]).resize_flatten(str(src), str(out), 40, 40, True)

    assert out.read_bytes() == data
    assert first.calls == 1
    assert second.calls == 0


def test_adapter_falls_back_when_output_invalid(tmp_path) -> None:
    src = tmp_path / "src.png"
    out = tmp_path / "Icon.png"
    _rgba_source(src)
    wrong_size = _FakeTool("wrong_size", size_delta=1)
    alpha = _FakeTool("alpha", keep_alpha=True)
    good = _FakeTool("good")

    res = ImageAdapter([wrong_size, alpha, good]).transform(str(src), str(out), 40, 40, True)

    assert res.tool == "good"
    assert [t.calls for t in (wrong_size, alpha, good)] == [1, 1, 1]
    assert measure(str(out)) == (40, 40, False)
    # Only the winning output remains.
    assert sorted(p.name for p in tmp_path.iterdir()) == ["Icon.png", "src.png"]


def test_adapter_skips_unavailable_tools(tmp_path) -> None:
    src = tmp_path / "src.png"
    _rgba_source(src)
    missing = _FakeTool("missing", available=False)
    good = _FakeTool("good")

    res = ImageAdapter([missing, good]).transform(str(src), str(tmp_path / "o.png"), 20, 20, True)

    assert res.tool == "good"
    assert missing.calls == 0


def test_adapter_no_available_tool(tmp_path) -> None:
    with pytest.raises(ToolUnavailable):
        ImageAdapter([_FakeTool("x", available=False)]).transform(
            str(tmp_path / "src.png"), str(tmp_path / "o.png"), 20, 20, True
        )


def test_adapter_all_tools_fail(tmp_path) -> None:
    src = tmp_path / "src.png"
    out = tmp_path / "o.png"
    _rgba_source(src)

    with pytest.raises(TransformFailed) as e:
        ImageAdapter([_FakeTool("a", error="boom"), _FakeTool("b", keep_alpha=True)]).transform(
            str(src), str(out), 20, 20, True
        )

    msg = str(e.value)
    assert "a: boom" in msg
    assert "b: output still has an alpha channel" in msg
    assert not out.exists()


def test_sips_tool_command(monkeypatch) -> None:
    calls: list[list[str]] = []
    monkeypatch.setattr(image_tools, "find_tool", lambda *names: "/usr/bin/sips")
    monkeypatch.setattr(image_tools, "run_cmd", lambda cmd, verbose=False: calls.append(cmd) or b"")

    image_tools.SipsTool().render("in.png", "out.png", 120, 80, True)

    assert calls == [["/usr/bin/sips", "-s", "format", "png", "-z", "80", "120", "in.png", "--out", "out.png"]]


def test_magick_tool_command_removes_alpha(monkeypatch) -> None:
    calls: list[list[str]] = []
    monkeypatch.setattr(image_tools, "find_tool", lambda *names: "/usr/bin/convert")
    monkeypatch.setattr(image_tools, "run_cmd", lambda cmd, verbose=False: calls.append(cmd) or b"")

    image_tools.MagickTool().render("in.png", "out.png", 40, 40, True)

    assert calls[0][:4] == ["/usr/bin/convert", "in.png", "-resize", "40x40!"]
    assert "-alpha" in calls[0]
    assert calls[0][-1] == "out.png"


def test_default_adapter_order_and_unknown_name() -> None:
    adapter = default_adapter()
    assert [t.name for t in adapter.tools] == ["pillow", "sips", "magick"]
    assert [t.name for t in default_adapter(["magick", "pillow"]).tools] == ["magick", "pillow"]
    with pytest.raises(ValueError):
        default_adapter(["gimp"])
