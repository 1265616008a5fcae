"""并发处理的工作单元。"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from asset_optimizer.core.config import AggressiveConfig, QualityConfig, RunMode
from asset_optimizer.core.exceptions import AssetOptimizerError
from asset_optimizer.core.markers import Tier
from asset_optimizer.core.models import Job, JobResult, JobStatus
from asset_optimizer.metadata.store import MetadataStore
from asset_optimizer.processing.aggressive import aggressive_compress
from asset_optimizer.processing.codecs import Codec, ImageFormat, compression_level

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class Toolkit:
    """工作进程使用的外部协作者：编码后端与标记存储。"""

    codec: Codec
    metadata: MetadataStore


@dataclass(slots=True, frozen=True)
class JobSettings:
    """所有任务共享的只读参数。"""

    quality: QualityConfig
    aggressive: AggressiveConfig
    size_threshold: int


def run_job(job: Job, settings: JobSettings, toolkit: Toolkit) -> JobResult:
    """执行单个任务，所有可预期的失败都转换为失败结果而不是异常。"""

    item = job.item
    original_size = item.size_bytes

    try:
        if job.mode is RunMode.AGGRESSIVE:
            level = aggressive_compress(
                item.absolute_path,
                job.output_path,
                settings.size_threshold,
                settings.aggressive,
                toolkit.codec,
                toolkit.metadata,
            )
        else:
            level = _optimize(job, settings.quality, toolkit)
        new_size = job.output_path.stat().st_size
    except (AssetOptimizerError, OSError) as exc:
        LOGGER.warning("处理失败 %s：%s", item.relative_path, exc)
        return JobResult(
            status=JobStatus.FAIL,
            relative_path=item.relative_path,
            original_size=original_size,
            message=str(exc),
        )

    LOGGER.info("完成 %s：%d -> %d 字节", item.relative_path, original_size, new_size)
    return JobResult(
        status=JobStatus.OK,
        relative_path=_reported_path(job),
        original_size=original_size,
        new_size=new_size,
        compression_level=level,
        output_path=job.output_path,
    )


def _optimize(job: Job, quality: QualityConfig, toolkit: Toolkit) -> Optional[int]:
    fmt = ImageFormat.from_path(job.item.absolute_path)
    toolkit.codec.transform(job.item.absolute_path, job.output_path, fmt, quality)
    # 标记是成功路径上的最后一步
    toolkit.metadata.write_marker(job.output_path, Tier.OPTIMIZED)
    return compression_level(fmt, quality)


def _reported_path(job: Job) -> Path:
    if job.mode is RunMode.AGGRESSIVE:
        return job.item.relative_path.with_suffix(".webp")
    return job.item.relative_path


def lower_priority(increment: int = 19) -> None:
    """进程池初始化函数：降低工作进程的调度优先级。"""

    try:
        os.nice(increment)
    except (AttributeError, OSError) as exc:
        LOGGER.debug("无法调整进程优先级: %s", exc)
