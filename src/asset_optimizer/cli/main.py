"""命令行入口。"""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)
from rich.table import Table

from asset_optimizer.core.config import AggressiveConfig, QualityConfig, RunConfig, RunMode, SUPPORTED_BACKENDS
from asset_optimizer.core.exceptions import InvalidConfigurationError, MissingDependencyError
from asset_optimizer.core.models import BatchResult
from asset_optimizer.core.progress import ProgressUpdate
from asset_optimizer.core.signing import signed_url
from asset_optimizer.processing.dispatcher import effective_concurrency
from asset_optimizer.processing.pipeline import PipelineResult, build_toolkit, process_batch
from asset_optimizer.processing.toolchain import INSTALL_HINT, check_dependencies
from asset_optimizer.utils.logging import setup_logging
from asset_optimizer.utils.sizes import format_size, parse_size

app = typer.Typer(help="批量图片优化工具：压缩大图、生成 WebP，并以元数据标记保证幂等。")
console = Console()

SECRET_ENV = "ASSETS_SIGNING_SECRET"


def _parse_threshold(value: str) -> int:
    try:
        return parse_size(value)
    except InvalidConfigurationError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _build_progress_callback(progress: Progress):
    task_ids: dict[RunMode, int] = {}

    def callback(update: ProgressUpdate) -> None:
        if update.total == 0:
            return
        task_id = task_ids.get(update.mode)
        if task_id is None:
            label = "优化图片" if update.mode is RunMode.NORMAL else "激进压缩"
            task_id = progress.add_task(label, total=update.total)
            task_ids[update.mode] = task_id
        progress.update(task_id, completed=update.completed)
        if update.message:
            progress.log(update.message)

    return callback


@app.command("run")
def run_cli(  # noqa: PLR0913
    inputs: List[Path] = typer.Argument(..., help="需要优化的图片文件或目录，可指定多个"),
    output: Path = typer.Option(Path("optimized"), "--output", "-o", help="输出目录"),
    dry_run: bool = typer.Option(False, "--dry-run", "-d", help="只预览将要处理的文件"),
    recursive: bool = typer.Option(False, "--recursive", "-r", help="递归扫描子目录"),
    webp: bool = typer.Option(False, "--webp", "-w", help="同时生成 WebP 版本"),
    force: bool = typer.Option(False, "--force", "-f", help="忽略已有标记与输出，重新处理"),
    size_threshold: str = typer.Option("1MB", "--size-threshold", "-s", help="大小阈值，例如 500KB、2MB"),
    max_dimension: int = typer.Option(1920, "--max-dimension", help="最长边上限（像素）"),
    jpeg_quality: int = typer.Option(92, "--jpeg-quality", help="JPEG 质量"),
    webp_quality: int = typer.Option(90, "--webp-quality", help="WebP 质量"),
    jobs: int = typer.Option(3, "--jobs", "-j", help="最大并发数（上限为 CPU 核数的四分之一）"),
    aggressive: bool = typer.Option(False, "--aggressive", "-a", help="常规优化后对仍然过大的文件执行激进 WebP 压缩"),
    aggressive_floor: int = typer.Option(
        75, "--aggressive-floor", "--aggressive-quality", help="激进压缩的质量下限"
    ),
    aggressive_start: int = typer.Option(95, "--aggressive-start", help="激进压缩的起始质量"),
    aggressive_output: Path = typer.Option(Path("aggressive"), "--aggressive-output", help="激进压缩输出目录"),
    backend: str = typer.Option("pillow", "--backend", help=f"编码后端：{' / '.join(SUPPORTED_BACKENDS)}"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="输出调试日志"),
) -> None:
    """执行批量优化。存在失败的文件时退出码为 1。"""

    setup_logging(verbose)
    logger = logging.getLogger(__name__)

    config = RunConfig(
        sources=[p.expanduser().resolve() for p in inputs],
        output_dir=output.expanduser().resolve(),
        size_threshold=_parse_threshold(size_threshold),
        quality=QualityConfig(
            max_dimension=max_dimension,
            jpeg_quality=jpeg_quality,
            webp_quality=webp_quality,
            generate_webp=webp,
        ),
        aggressive=AggressiveConfig(
            enabled=aggressive,
            output_dir=aggressive_output.expanduser().resolve(),
            start_quality=aggressive_start,
            floor_quality=aggressive_floor,
        ),
        jobs=jobs,
        recursive=recursive,
        force=force,
        dry_run=dry_run,
        backend=backend,
    )

    try:
        config.validate()
        check_dependencies(config.backend)
    except InvalidConfigurationError as exc:
        console.print(f"[red][ERROR][/red] {exc}")
        raise typer.Exit(code=2) from exc
    except MissingDependencyError as exc:
        console.print(f"[red][ERROR][/red] {exc}")
        console.print(f"安装命令：\n  {INSTALL_HINT}")
        raise typer.Exit(code=1) from exc

    _print_settings(config)
    logger.debug("CLI 参数解析完成")

    progress = Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TimeElapsedColumn(),
        TimeRemainingColumn(),
        console=console,
    )

    with progress:
        result = process_batch(
            config,
            toolkit=build_toolkit(config.backend),
            progress_callback=_build_progress_callback(progress),
        )

    _print_result(result)
    if result.failed_count:
        raise typer.Exit(code=1)


@app.command("sign")
def sign_cli(
    uri: str = typer.Argument(..., help="资源路径，例如 /dialectica/paper.pdf"),
    expires_in: int = typer.Option(3600, "--expires-in", "-e", help="有效期（秒）"),
    secret: Optional[str] = typer.Option(None, "--secret", envvar=SECRET_ENV, help=f"签名密钥，默认读取 {SECRET_ENV}"),
) -> None:
    """生成与 nginx secure_link 兼容的签名 URL。"""

    if not secret:
        console.print(f"[red][ERROR][/red] 未提供签名密钥（--secret 或 {SECRET_ENV}）")
        raise typer.Exit(code=2)
    if not uri.startswith("/"):
        raise typer.BadParameter("资源路径必须以 / 开头")

    expires = int(time.time()) + expires_in
    typer.echo(signed_url(uri, secret, expires))


def _print_settings(config: RunConfig) -> None:
    console.print(f"[blue][INFO][/blue] 输入：{' '.join(str(p) for p in config.sources)}")
    console.print(f"[blue][INFO][/blue] 输出目录：{config.output_dir}")
    console.print(f"[blue][INFO][/blue] 大小阈值：{format_size(config.size_threshold)}")
    console.print(f"[blue][INFO][/blue] 最长边上限：{config.quality.max_dimension}px")
    console.print(
        f"[blue][INFO][/blue] 并发数：{effective_concurrency(config.jobs)}（CPU 核数 {os.cpu_count() or '未知'}）"
    )
    flags = {
        "dry-run": config.dry_run,
        "recursive": config.recursive,
        "webp": config.quality.generate_webp,
        "force": config.force,
        "aggressive": config.aggressive.enabled,
    }
    console.print("[blue][INFO][/blue] " + ", ".join(f"{name}={value}" for name, value in flags.items()))


def _print_result(result: PipelineResult) -> None:
    for stage in result.stages:
        if stage.dry_run:
            _print_dry_run(stage)
        else:
            _print_stage(stage)


def _print_dry_run(stage: BatchResult) -> None:
    title = "预览（常规优化）" if stage.mode is RunMode.NORMAL else "预览（激进压缩）"
    console.rule(title)
    for job in stage.planned:
        dims = f"{job.item.dimensions[0]}x{job.item.dimensions[1]}" if job.item.dimensions else "?"
        size = format_size(job.item.size_bytes)
        console.print(f"  [yellow][WOULD PROCESS][/yellow] {job.item.relative_path} ({size}, {dims})")
    console.print(f"将处理 {len(stage.planned)} 个，跳过 {stage.skipped_count} 个。")


def _print_stage(stage: BatchResult) -> None:
    title = "优化结果" if stage.mode is RunMode.NORMAL else "激进压缩结果"
    console.rule(title)

    summary = stage.summary
    if summary is None:
        console.print(f"没有需要处理的图片，跳过 {stage.skipped_count} 个。")
        return

    table = Table(show_footer=False)
    table.add_column("文件")
    table.add_column("原始大小", justify="right")
    table.add_column("优化后", justify="right")
    table.add_column("节省", justify="right")
    table.add_column("质量", justify="right")
    for row in summary.rows:
        table.add_row(
            str(row.relative_path),
            format_size(row.original_size),
            format_size(row.optimized_size),
            f"-{row.percent_saved:.1f}%",
            "lossless" if row.compression_level is None else str(row.compression_level),
        )
    console.print(table)

    console.print(f"[green][OK][/green] 处理 {summary.processed} 个，跳过 {summary.skipped} 个")
    if summary.failed:
        console.print(f"[yellow][WARN][/yellow] 失败 {summary.failed} 个")
        for failed in stage.failed:
            console.print(f"  [red]FAILED[/red] {failed.relative_path}: {failed.message}")
    if summary.processed:
        console.print(
            f"[green][OK][/green] 总计 {format_size(summary.total_original)} -> "
            f"{format_size(summary.total_optimized)}，节省 {format_size(summary.total_savings)} "
            f"(-{summary.savings_percent:.1f}%)"
        )
    for path in stage.report_paths:
        console.print(f"[blue][INFO][/blue] 报告文件：{path}")


if __name__ == "__main__":
    app()
