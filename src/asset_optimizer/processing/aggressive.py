"""激进压缩：逐步降低 WebP 质量直到文件足够小。"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional

from asset_optimizer.core.config import AggressiveConfig
from asset_optimizer.core.markers import Tier
from asset_optimizer.metadata.store import MetadataStore
from asset_optimizer.processing.codecs import Codec

LOGGER = logging.getLogger(__name__)

EncodeObserver = Optional[Callable[[int, int], None]]


def aggressive_compress(
    input_path: Path,
    output_path: Path,
    size_threshold: int,
    settings: AggressiveConfig,
    codec: Codec,
    metadata: MetadataStore,
    on_encode: EncodeObserver = None,
) -> int:
    """将已优化的文件重新编码为 WebP，返回最终使用的质量。

    从 ``start_quality`` 开始，每次降低 ``step``，直到输出不超过阈值或到达
    ``floor_quality``。每一轮都从原始输入重新编码，避免有损结果层层叠加。
    到达下限后即使仍超过阈值也停止。``on_encode(quality, size)`` 在每次编码后调用。
    """

    quality = settings.start_quality
    codec.encode_webp(input_path, output_path, quality)
    size = output_path.stat().st_size
    if on_encode:
        on_encode(quality, size)

    while size > size_threshold and quality > settings.floor_quality:
        quality = max(quality - settings.step, settings.floor_quality)
        codec.encode_webp(input_path, output_path, quality)
        size = output_path.stat().st_size
        if on_encode:
            on_encode(quality, size)
        LOGGER.debug("%s 质量 %d -> %d 字节", input_path.name, quality, size)

    if size > size_threshold:
        LOGGER.info("%s 已到达质量下限 %d，仍有 %d 字节", input_path.name, quality, size)

    metadata.write_marker(output_path, Tier.AGGRESSIVE)
    return quality
