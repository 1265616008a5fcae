"""基于 exiftool 的优化标记读写。"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Mapping, Protocol, Sequence

from exiftool import ExifToolHelper
from exiftool.exceptions import ExifToolException

from asset_optimizer.core.exceptions import MetadataError
from asset_optimizer.core.markers import Tier, text_to_tier, tier_to_text

LOGGER = logging.getLogger(__name__)

READ_TAGS = ["Comment", "XMP:Description"]
# WebP 容器没有 Comment 字段，标记写入 XMP 描述。
WEBP_TAG = "XMP:Description"
DEFAULT_TAG = "Comment"

_EXIFTOOL_ERRORS = (ExifToolException, OSError, ValueError, TypeError)


class MetadataStore(Protocol):
    """标记存储接口：批量读取，单文件写入。"""

    def read_markers(self, paths: Sequence[Path]) -> dict[Path, Tier]:
        ...

    def write_marker(self, path: Path, tier: Tier) -> None:
        ...


def tag_for(path: Path) -> str:
    return WEBP_TAG if path.suffix.lower() == ".webp" else DEFAULT_TAG


class ExifToolMetadataStore:
    """通过 pyexiftool 访问图片内嵌的 Comment 字段。

    读取失败时按"无标记"处理，写入失败则抛出 :class:`MetadataError`。
    """

    def __init__(self, executable: str | None = None) -> None:
        self.executable = executable

    def _helper(self) -> ExifToolHelper:
        if self.executable:
            return ExifToolHelper(executable=self.executable)
        return ExifToolHelper()

    def read_markers(self, paths: Sequence[Path]) -> dict[Path, Tier]:
        markers = {path: Tier.NONE for path in paths}
        if not paths:
            return markers

        try:
            with self._helper() as et:
                blocks = et.get_tags([str(path) for path in paths], tags=READ_TAGS)
            markers.update(_blocks_to_markers(blocks, paths))
            return markers
        except _EXIFTOOL_ERRORS as exc:
            LOGGER.warning("批量读取标记失败，改为逐个读取：%s", exc)

        for path in paths:
            markers[path] = self._read_single(path)
        return markers

    def _read_single(self, path: Path) -> Tier:
        try:
            with self._helper() as et:
                blocks = et.get_tags([str(path)], tags=READ_TAGS)
        except _EXIFTOOL_ERRORS as exc:
            LOGGER.debug("读取标记失败，视为未标记 %s: %s", path, exc)
            return Tier.NONE
        return _blocks_to_markers(blocks, [path]).get(path, Tier.NONE)

    def write_marker(self, path: Path, tier: Tier) -> None:
        try:
            with self._helper() as et:
                et.set_tags([str(path)], tags={tag_for(path): tier_to_text(tier)}, params=["-overwrite_original"])
        except _EXIFTOOL_ERRORS as exc:
            raise MetadataError(f"写入标记失败: {path}") from exc


def _blocks_to_markers(blocks: Iterable[Mapping[str, object]], paths: Sequence[Path]) -> dict[Path, Tier]:
    """将 exiftool 的 JSON 输出映射回输入路径。"""

    by_name = {str(path): path for path in paths}
    markers: dict[Path, Tier] = {}
    for index, block in enumerate(blocks):
        source = block.get("SourceFile")
        path = by_name.get(str(source)) if source is not None else None
        if path is None:
            if index >= len(paths):
                continue
            path = paths[index]
        markers[path] = _block_tier(block)
    return markers


def _block_tier(block: Mapping[str, object]) -> Tier:
    best = Tier.NONE
    for key, value in block.items():
        if key == "SourceFile":
            continue
        if key.endswith("Comment") or key.endswith("Description"):
            best = max(best, text_to_tier(value))
    return best
