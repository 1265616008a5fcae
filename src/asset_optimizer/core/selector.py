"""候选筛选：根据阈值、层级标记与已有输出决定哪些文件需要处理。"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional, Sequence

from asset_optimizer.core.config import RunConfig, RunMode
from asset_optimizer.core.markers import Tier
from asset_optimizer.core.models import Job, Selection, SourceFile, WorkItem
from asset_optimizer.metadata.store import MetadataStore
from asset_optimizer.processing.codecs import Codec, Dimensions

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class LookupTable:
    """筛选前一次性批量读取的只读查找表，键为绝对路径。"""

    markers: Mapping[Path, Tier]
    dimensions: Mapping[Path, Dimensions]

    def marker(self, path: Path) -> Tier:
        return self.markers.get(path, Tier.NONE)

    def dimensions_of(self, path: Path) -> Dimensions:
        return self.dimensions.get(path)


def build_lookup_table(
    paths: Sequence[Path],
    metadata: MetadataStore,
    codec: Codec,
    read_markers: bool = True,
    read_dimensions: bool = True,
) -> LookupTable:
    """批量读取标记与尺寸，每类信息只调用一次外部工具。"""

    markers = metadata.read_markers(list(paths)) if paths and read_markers else {}
    dimensions = codec.probe_dimensions(list(paths)) if paths and read_dimensions else {}
    return LookupTable(markers=MappingProxyType(dict(markers)), dimensions=MappingProxyType(dict(dimensions)))


def output_path_for(config: RunConfig, source: SourceFile, mode: RunMode) -> Path:
    if mode is RunMode.AGGRESSIVE:
        return config.aggressive.output_dir / source.relative_path.with_suffix(".webp")
    return config.output_dir / source.relative_path


def aggressive_marker_paths(config: RunConfig, sources: Sequence[SourceFile]) -> list[Path]:
    """激进阶段还需要读取已存在的激进输出上的标记。"""

    outputs = [output_path_for(config, source, RunMode.AGGRESSIVE) for source in sources]
    return [path for path in outputs if path.exists()]


def make_work_item(source: SourceFile, lookup: LookupTable) -> WorkItem:
    return WorkItem(
        absolute_path=source.absolute_path,
        relative_path=source.relative_path,
        size_bytes=source.absolute_path.stat().st_size,
        dimensions=lookup.dimensions_of(source.absolute_path),
        marker=lookup.marker(source.absolute_path),
    )


def select_candidates(
    config: RunConfig,
    sources: Sequence[SourceFile],
    lookup: LookupTable,
    mode: RunMode = RunMode.NORMAL,
) -> Selection:
    """将扫描结果划分为待处理任务与跳过计数，每个文件只落入其中一侧。"""

    jobs: list[Job] = []
    skipped = 0

    for source in sources:
        try:
            item = make_work_item(source, lookup)
        except OSError as exc:
            # 扫描之后被删除或无法访问的文件
            LOGGER.warning("无法读取文件信息，跳过 %s：%s", source.relative_path, exc)
            skipped += 1
            continue
        output_path = output_path_for(config, source, mode)

        if mode is RunMode.AGGRESSIVE:
            reason = _aggressive_skip_reason(config, item, output_path, lookup)
        else:
            reason = _normal_skip_reason(config, item, output_path)

        if reason:
            LOGGER.debug("跳过 %s：%s", item.relative_path, reason)
            skipped += 1
            continue

        jobs.append(Job(item=item, output_path=output_path, mode=mode))

    return Selection(jobs=tuple(jobs), skipped_count=skipped)


def needs_optimization(item: WorkItem, size_threshold: int, max_dimension: int) -> bool:
    """大小或最长边严格大于阈值才需要优化。"""

    if item.size_bytes > size_threshold:
        return True
    return item.longest_side > max_dimension


def _normal_skip_reason(config: RunConfig, item: WorkItem, output_path: Path) -> Optional[str]:
    if not config.force:
        if output_path.exists():
            return "输出已存在"
        if item.marker >= Tier.OPTIMIZED:
            return f"已标记为 {item.marker.name.lower()}"
    if not needs_optimization(item, config.size_threshold, config.quality.max_dimension):
        return "未超过大小与尺寸阈值"
    return None


def _aggressive_skip_reason(
    config: RunConfig,
    item: WorkItem,
    output_path: Path,
    lookup: LookupTable,
) -> Optional[str]:
    eligible_tiers = {Tier.OPTIMIZED, Tier.AGGRESSIVE} if config.force else {Tier.OPTIMIZED}
    if item.marker not in eligible_tiers:
        return f"标记为 {item.marker.name.lower()}，不属于激进阶段的输入"
    if not config.force and lookup.marker(output_path) >= Tier.AGGRESSIVE:
        return "激进输出已存在"
    # 激进阶段只看文件大小，不检查尺寸
    if item.size_bytes <= config.size_threshold:
        return "未超过大小阈值"
    return None
