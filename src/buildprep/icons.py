"""
图标矩阵生成：根据固定规格表，从一张源图生成完整的图标集。

每个规格输出独立文件、只读共享源图，因此可以在线程池中并行生成。
"""

from __future__ import annotations

import os
from collections import Counter
from dataclasses import dataclass, field
from multiprocessing.pool import ThreadPool

from PIL import Image

from .errors import SourceImageError, ToolUnavailable, TransformFailed
from .image_tools import ImageAdapter, measure
from .pipeline_utils import log_step
from .types import GeneratedIcon, IconSpec, IconTable, PipelineWarning, SourceImage

COMPONENT = "icons"

# 低于该边长仍可继续，但会给出画质警告。
MIN_SOURCE_PIXELS = 1024
LOW_SOURCE_PIXELS = 256


@dataclass
class IconSetResult:
    """一次生成的汇总：合格图标、未满足的规格与警告。"""

    icons: list[GeneratedIcon] = field(default_factory=list)
    unmet: list[str] = field(default_factory=list)
    reasons: dict[str, str] = field(default_factory=dict)
    warnings: list[PipelineWarning] = field(default_factory=list)
    marketing_ok: bool = False


def read_source_image(path: str) -> SourceImage:
    """读取并度量源图片。"""
    if not path or not os.path.isfile(path):
        raise SourceImageError(f"source image not found: {path or '<unset>'}")
    try:
        width, height, has_alpha = measure(path)
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        raise SourceImageError(f"cannot read source image {path}: {e}") from e
    return SourceImage(path=path, width=width, height=height, has_alpha=has_alpha)


def quality_warning(source: SourceImage) -> PipelineWarning | None:
    """源图分辨率不足时返回非致命警告。"""
    short_side = min(source.width, source.height)
    if short_side >= MIN_SOURCE_PIXELS:
        return None
    dims = f"{source.width}x{source.height}"
    if short_side >= LOW_SOURCE_PIXELS:
        msg = f"source image has moderate resolution ({dims}) - may affect icon quality"
    else:
        msg = f"source image has low resolution ({dims}) - will affect icon quality"
    return PipelineWarning(code="low_resolution", component=COMPONENT, message=msg)


def measure_icon(spec: IconSpec, path: str) -> GeneratedIcon | None:
    """度量某个规格的输出文件；文件缺失或不可读时返回 `None`。"""
    if not os.path.isfile(path):
        return None
    try:
        width, height, has_alpha = measure(path)
    except (OSError, ValueError, Image.DecompressionBombError):
        return None
    return GeneratedIcon(spec=spec, path=path, width=width, height=height, has_alpha=has_alpha)


def generate_icon_set(
    source: SourceImage,
    table: IconTable,
    out_dir: str,
    adapter: ImageAdapter,
    *,
    workers: int = 4,
    verbose: bool = False,
) -> IconSetResult:
    """生成整套图标；单个规格失败只记录在结果中，不影响其他规格。"""
    os.makedirs(out_dir, exist_ok=True)
    marketing = table.marketing
    preferred = adapter.tools[0].name if adapter.tools else ""

    def _work(spec: IconSpec) -> tuple[IconSpec, str, str]:
        out = os.path.join(out_dir, spec.filename)
        # Android 的文件名带密度子目录。
        os.makedirs(os.path.dirname(out), exist_ok=True)
        # 商店校验最容易失败的大图标每次都从源图重新生成。
        if spec != marketing:
            existing = measure_icon(spec, out)
            if existing is not None and existing.is_valid(table.forbid_alpha):
                if verbose:
                    log_step(f"Icon up to date: {spec.filename}")
                return spec, "", ""
        try:
            result = adapter.transform(source.path, out, spec.pixels, spec.pixels, table.forbid_alpha)
        except (ToolUnavailable, TransformFailed) as e:
            return spec, "", str(e)
        if verbose:
            log_step(f"Icon generated with {result.tool}: {spec.filename}")
        return spec, result.tool, ""

    pool_size = max(1, min(workers, len(table.specs)))
    with ThreadPool(pool_size) as pool:
        outcomes = pool.map(_work, table.specs)

    res = IconSetResult()
    fallbacks: Counter[str] = Counter()
    for spec, tool, error in outcomes:
        if tool and tool != preferred:
            fallbacks[tool] += 1
        icon = measure_icon(spec, os.path.join(out_dir, spec.filename))
        if icon is not None and icon.is_valid(table.forbid_alpha):
            res.icons.append(icon)
            continue
        res.unmet.append(spec.filename)
        if error:
            res.reasons[spec.filename] = error
        elif icon is None:
            res.reasons[spec.filename] = "output missing or unreadable"
        else:
            res.reasons[spec.filename] = (
                f"measured {icon.width}x{icon.height} alpha={icon.has_alpha}, "
                f"expected {spec.pixels}x{spec.pixels}"
            )

    for tool, count in sorted(fallbacks.items()):
        res.warnings.append(
            PipelineWarning(
                code="tool_fallback",
                component=COMPONENT,
                message=f"{count} icon(s) produced by fallback tool {tool}",
            )
        )
    res.marketing_ok = marketing.filename not in res.unmet
    return res
