"""处理流水线：扫描筛选、并发执行、汇总报告，以及可选的激进阶段。"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from functools import partial
from pathlib import Path
from typing import Callable, Optional, Sequence

from asset_optimizer.core.config import RunConfig, RunMode
from asset_optimizer.core.models import BatchResult, Job, JobResult, SourceFile
from asset_optimizer.core.progress import ProgressUpdate
from asset_optimizer.core.report import RunSummary, summarize, write_csv_report, write_text_report
from asset_optimizer.core.scanner import collect_source_files
from asset_optimizer.core.selector import (
    LookupTable,
    aggressive_marker_paths,
    build_lookup_table,
    select_candidates,
)
from asset_optimizer.metadata.store import ExifToolMetadataStore
from asset_optimizer.processing.codecs import PillowCodec
from asset_optimizer.processing.dispatcher import ExecutorFactory, default_executor, dispatch, effective_concurrency
from asset_optimizer.processing.toolchain import ToolchainCodec
from asset_optimizer.processing.worker import JobSettings, Toolkit, run_job

LOGGER = logging.getLogger(__name__)

AGGRESSIVE_REPORT_BASENAME = "aggressive-report"

ProgressCallback = Optional[Callable[[ProgressUpdate], None]]


@dataclass(slots=True)
class PipelineResult:
    """常规阶段与激进阶段的产出。"""

    optimize: BatchResult
    aggressive: Optional[BatchResult] = None

    @property
    def stages(self) -> list[BatchResult]:
        return [stage for stage in (self.optimize, self.aggressive) if stage is not None]

    @property
    def failed_count(self) -> int:
        return sum(len(stage.failed) for stage in self.stages)


def build_toolkit(backend: str) -> Toolkit:
    codec = ToolchainCodec() if backend == "toolchain" else PillowCodec()
    return Toolkit(codec=codec, metadata=ExifToolMetadataStore())


def process_batch(
    config: RunConfig,
    toolkit: Optional[Toolkit] = None,
    progress_callback: ProgressCallback = None,
    executor_factory: ExecutorFactory = default_executor,
) -> PipelineResult:
    """批量处理入口。配置错误在任何处理开始之前抛出。"""

    config.validate()
    config = _resolve_paths(config)
    toolkit = toolkit or build_toolkit(config.backend)

    optimize = _run_stage(config, RunMode.NORMAL, config.sources, toolkit, progress_callback, executor_factory)

    aggressive: Optional[BatchResult] = None
    if config.aggressive.enabled:
        if config.output_dir.is_dir():
            aggressive = _run_stage(
                config,
                RunMode.AGGRESSIVE,
                [config.output_dir],
                toolkit,
                progress_callback,
                executor_factory,
            )
        else:
            LOGGER.info("输出目录不存在，跳过激进阶段：%s", config.output_dir)

    return PipelineResult(optimize=optimize, aggressive=aggressive)


def _resolve_paths(config: RunConfig) -> RunConfig:
    return replace(
        config,
        sources=[path.expanduser().resolve() for path in config.sources],
        output_dir=config.output_dir.expanduser().resolve(),
        aggressive=replace(config.aggressive, output_dir=config.aggressive.output_dir.expanduser().resolve()),
    )


def _run_stage(
    config: RunConfig,
    mode: RunMode,
    inputs: Sequence[Path],
    toolkit: Toolkit,
    progress_callback: ProgressCallback,
    executor_factory: ExecutorFactory,
) -> BatchResult:
    # 激进阶段扫描常规输出目录，总是递归
    recursive = config.recursive if mode is RunMode.NORMAL else True
    sources = collect_source_files(inputs, recursive)
    LOGGER.info("[%s] 发现 %d 个候选图片文件", mode.value, len(sources))

    # 阶段一：筛选（顺序执行）
    selection = select_candidates(config, sources, _lookup(config, mode, sources, toolkit), mode)
    jobs = selection.jobs
    LOGGER.info("[%s] 待处理 %d 个，跳过 %d 个", mode.value, len(jobs), selection.skipped_count)

    if config.dry_run:
        return BatchResult(
            mode=mode,
            results=[],
            skipped_count=selection.skipped_count,
            dry_run=True,
            planned=jobs,
        )

    if not jobs:
        _emit_progress(progress_callback, 0, 0, mode, "没有需要处理的图片")
        return BatchResult(mode=mode, results=[], skipped_count=selection.skipped_count)

    _prepare_output_dirs(jobs)

    # 阶段二：并发处理
    limit = effective_concurrency(config.jobs)
    LOGGER.info("[%s] 并发数：%d（请求 %d）", mode.value, limit, config.jobs)
    settings = JobSettings(quality=config.quality, aggressive=config.aggressive, size_threshold=config.size_threshold)
    runner = partial(run_job, settings=settings, toolkit=toolkit)

    total = len(jobs)
    completed = 0

    def on_result(result: JobResult) -> None:
        nonlocal completed
        completed += 1
        status = "完成" if result.ok else "失败"
        _emit_progress(progress_callback, completed, total, mode, f"{status} {result.relative_path}")

    _emit_progress(progress_callback, 0, total, mode, "开始执行处理任务")
    results = dispatch(jobs, runner, limit, executor_factory=executor_factory, on_result=on_result)

    # 阶段三：汇总
    summary = summarize(results, selection.skipped_count)
    batch = BatchResult(mode=mode, results=results, skipped_count=selection.skipped_count, summary=summary)
    batch.report_paths = _write_reports(config, mode, summary)
    _emit_progress(progress_callback, total, total, mode, "处理完成")
    return batch


def _lookup(config: RunConfig, mode: RunMode, sources: Sequence[SourceFile], toolkit: Toolkit) -> LookupTable:
    paths = [source.absolute_path for source in sources]
    if mode is RunMode.AGGRESSIVE:
        paths = paths + aggressive_marker_paths(config, sources)
        return build_lookup_table(paths, toolkit.metadata, toolkit.codec, read_dimensions=False)

    # 强制模式忽略标记，只需读取尺寸
    return build_lookup_table(paths, toolkit.metadata, toolkit.codec, read_markers=not config.force)


def _prepare_output_dirs(jobs: Sequence[Job]) -> None:
    """在派发前创建全部输出目录，避免工作进程之间竞争。"""

    for directory in sorted({job.output_path.parent for job in jobs}):
        directory.mkdir(parents=True, exist_ok=True)


def _write_reports(config: RunConfig, mode: RunMode, summary: RunSummary) -> tuple[Path, ...]:
    if mode is RunMode.AGGRESSIVE:
        directory = config.aggressive.output_dir
        basename = AGGRESSIVE_REPORT_BASENAME
        title = "Aggressive Compression Report"
    else:
        directory = config.output_dir
        basename = config.report_basename
        title = "Image Optimization Report"

    directory.mkdir(parents=True, exist_ok=True)
    try:
        text_path = write_text_report(summary, directory / f"{basename}.txt", title, config.sources)
        csv_path = write_csv_report(summary.rows, directory / f"{basename}.csv")
    except OSError as exc:
        LOGGER.error("写入报告失败：%s", exc)
        return ()
    return text_path, csv_path


def _emit_progress(
    callback: ProgressCallback,
    completed: int,
    total: int,
    mode: RunMode,
    message: Optional[str] = None,
) -> None:
    if not callback:
        return
    callback(ProgressUpdate(total=total, completed=completed, mode=mode, message=message))
