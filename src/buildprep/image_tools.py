"""
图片缩放/去透明工具适配层。

把若干外部工具（Pillow、macOS `sips`、ImageMagick）收敛为统一接口，
并按显式的有序策略列表依次尝试：第一个执行成功且输出合格的工具胜出。
"""

from __future__ import annotations

import os
from collections.abc import Sequence
from dataclasses import dataclass

from PIL import Image

from .errors import ToolUnavailable, TransformFailed
from .pipeline_utils import find_tool, run_cmd

_ALPHA_MODES = ("RGBA", "LA", "PA", "RGBa", "La")
_FLATTEN_BACKGROUND = (255, 255, 255)


def image_has_alpha(img: Image.Image) -> bool:
    """判断图片是否带透明通道（含调色板透明色）。"""
    if img.mode in _ALPHA_MODES:
        return True
    return "transparency" in img.info


def measure(path: str) -> tuple[int, int, bool]:
    """读取图片并返回 `(width, height, has_alpha)`。"""
    with Image.open(path) as img:
        return img.width, img.height, image_has_alpha(img)


class ResizeTool:
    """单个缩放工具策略的基类。"""

    name = ""

    def __init__(self, *, verbose: bool = False) -> None:
        self.verbose = verbose

    def available(self) -> bool:
        raise NotImplementedError

    def render(
        self, source: str, output: str, width: int, height: int, forbid_alpha: bool
    ) -> None:
        raise NotImplementedError


class PillowTool(ResizeTool):
    """进程内的 Pillow 实现；去透明时合成到白色背景上。"""

    name = "pillow"

    def available(self) -> bool:
        return True

    def render(
        self, source: str, output: str, width: int, height: int, forbid_alpha: bool
    ) -> None:
        with Image.open(source) as img:
            rgba = img.convert("RGBA")
        resized = rgba.resize((width, height), Image.Resampling.LANCZOS)
        if forbid_alpha:
            flat = Image.new("RGB", resized.size, _FLATTEN_BACKGROUND)
            flat.paste(resized, mask=resized.getchannel("A"))
            resized = flat
        resized.save(output, format="PNG")


class SipsTool(ResizeTool):
    """macOS 自带的 `sips`；只负责缩放，透明通道是否保留取决于源图。"""

    name = "sips"

    def available(self) -> bool:
        return bool(find_tool("sips"))

    def render(
        self, source: str, output: str, width: int, height: int, forbid_alpha: bool
    ) -> None:
        # `-z` 的参数顺序是 height width。
        cmd = [find_tool("sips"), "-s", "format", "png", "-z", str(height), str(width), source]
        cmd += ["--out", output]
        run_cmd(cmd, verbose=self.verbose)


class MagickTool(ResizeTool):
    """ImageMagick：优先 7.x 的 `magick`，否则回退到 6.x 的 `convert`。"""

    name = "magick"

    def available(self) -> bool:
        return bool(find_tool("magick", "convert"))

    def render(
        self, source: str, output: str, width: int, height: int, forbid_alpha: bool
    ) -> None:
        # `!` 强制精确尺寸，不保持宽高比。
        cmd = [find_tool("magick", "convert"), source, "-resize", f"{width}x{height}!"]
        if forbid_alpha:
            cmd += ["-background", "white", "-alpha", "remove", "-alpha", "off"]
        cmd.append(output)
        run_cmd(cmd, verbose=self.verbose)


TOOLS: dict[str, type[ResizeTool]] = {
    "pillow": PillowTool,
    "sips": SipsTool,
    "magick": MagickTool,
}
DEFAULT_ORDER = ("pillow", "sips", "magick")


@dataclass(frozen=True)
class TransformResult:
    """一次转换的结果：胜出的工具名与输出字节。"""

    tool: str
    data: bytes


def _temp_output(output: str, tool_name: str) -> str:
    stem, _ext = os.path.splitext(output)
    return f"{stem}.{tool_name}.tmp.png"


def _output_problem(path: str, width: int, height: int, forbid_alpha: bool) -> str:
    """度量工具输出，合格时返回空字符串，否则返回原因。"""
    got_w, got_h, has_alpha = measure(path)
    if (got_w, got_h) != (width, height):
        return f"produced {got_w}x{got_h}, expected {width}x{height}"
    if forbid_alpha and has_alpha:
        return "output still has an alpha channel"
    return ""


class ImageAdapter:
    """按有序策略列表调用缩放工具；每个请求中每个工具最多调用一次。"""

    def __init__(self, tools: Sequence[ResizeTool]) -> None:
        self.tools = list(tools)

    def transform(
        self,
        source: str,
        output: str,
        target_width: int,
        target_height: int,
        forbid_alpha: bool,
    ) -> TransformResult:
        """执行转换并返回胜出工具与输出字节；只有胜出结果会落到 `output`。"""
        available = [t for t in self.tools if t.available()]
        if not available:
            names = ", ".join(t.name for t in self.tools) or "<none>"
            raise ToolUnavailable(f"No image tool available (tried: {names})")

        failures: list[str] = []
        for tool in available:
            tmp = _temp_output(output, tool.name)
            try:
                tool.render(source, tmp, target_width, target_height, forbid_alpha)
                problem = _output_problem(tmp, target_width, target_height, forbid_alpha)
                if problem:
                    failures.append(f"{tool.name}: {problem}")
                    continue
                os.replace(tmp, output)
                with open(output, "rb") as f:
                    return TransformResult(tool=tool.name, data=f.read())
            except (RuntimeError, OSError, ValueError, Image.DecompressionBombError) as e:
                failures.append(f"{tool.name}: {e}")
            finally:
                if os.path.exists(tmp):
                    os.remove(tmp)

        detail = "\n  - ".join(failures)
        raise TransformFailed(
            f"All image tools failed for {os.path.basename(output)}:\n  - {detail}"
        )

    def resize_flatten(
        self,
        source: str,
        output: str,
        target_width: int,
        target_height: int,
        forbid_alpha: bool,
    ) -> bytes:
        return self.transform(source, output, target_width, target_height, forbid_alpha).data


def default_adapter(names: Sequence[str] | None = None, *, verbose: bool = False) -> ImageAdapter:
    """根据工具名列表构建适配器，默认顺序为 pillow → sips → magick。"""
    tools: list[ResizeTool] = []
    for name in names or DEFAULT_ORDER:
        cls = TOOLS.get(name)
        if cls is None:
            raise ValueError(f"unknown image tool: {name}")
        tools.append(cls(verbose=verbose))
    return ImageAdapter(tools)
