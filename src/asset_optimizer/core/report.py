"""结果汇总与报告生成。"""

from __future__ import annotations

import csv
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional, Sequence

from asset_optimizer.core.models import JobResult
from asset_optimizer.utils.sizes import format_size

CSV_HEADER = ["relative_path", "original_size", "optimized_size", "percent_saved", "compression_level"]


def percent_saved(original_size: int, new_size: int) -> float:
    """节省比例（百分比），原始大小为 0 时返回 0。"""

    if original_size <= 0:
        return 0.0
    return (original_size - new_size) * 100.0 / original_size


@dataclass(slots=True, frozen=True)
class ReportRow:
    relative_path: Path
    original_size: int
    optimized_size: int
    compression_level: Optional[int]

    @property
    def percent_saved(self) -> float:
        return percent_saved(self.original_size, self.optimized_size)


@dataclass(slots=True, frozen=True)
class RunSummary:
    """一个阶段的汇总数据。"""

    processed: int
    skipped: int
    failed: int
    total_original: int
    total_optimized: int
    rows: tuple[ReportRow, ...]

    @property
    def total_savings(self) -> int:
        return self.total_original - self.total_optimized

    @property
    def savings_percent(self) -> float:
        return percent_saved(self.total_original, self.total_optimized)


def summarize(results: Iterable[JobResult], skipped: int) -> RunSummary:
    """在并发阶段结束后单线程地汇总所有结果。"""

    rows: list[ReportRow] = []
    failed = 0
    for result in results:
        if not result.ok:
            failed += 1
            continue
        rows.append(
            ReportRow(
                relative_path=result.relative_path,
                original_size=result.original_size,
                optimized_size=result.new_size,
                compression_level=result.compression_level,
            )
        )

    rows.sort(key=lambda row: str(row.relative_path).lower())
    return RunSummary(
        processed=len(rows),
        skipped=skipped,
        failed=failed,
        total_original=sum(row.original_size for row in rows),
        total_optimized=sum(row.optimized_size for row in rows),
        rows=tuple(rows),
    )


def write_csv_report(rows: Sequence[ReportRow], report_path: Path) -> Path:
    """每个成功处理的文件写一行。"""

    with report_path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(CSV_HEADER)
        for row in rows:
            writer.writerow(
                [
                    row.relative_path.as_posix(),
                    row.original_size,
                    row.optimized_size,
                    _format_percent(row.percent_saved),
                    _format_level(row.compression_level),
                ]
            )
    return report_path


def render_summary(summary: RunSummary, title: str, inputs: Sequence[Path], output_dir: Path) -> str:
    lines = [
        title,
        "=" * len(title),
        f"Date: {datetime.now():%Y-%m-%d %H:%M:%S}",
        f"Input: {' '.join(str(path) for path in inputs)}",
        f"Output: {output_dir}",
        "",
        f"Images processed: {summary.processed}",
        f"Images skipped: {summary.skipped}",
        f"Images failed: {summary.failed}",
        f"Original size: {format_size(summary.total_original)}",
        f"Optimized size: {format_size(summary.total_optimized)}",
        f"Savings: {format_size(summary.total_savings)} (-{_format_percent(summary.savings_percent)}%)",
    ]
    return "\n".join(lines) + "\n"


def write_text_report(summary: RunSummary, report_path: Path, title: str, inputs: Sequence[Path]) -> Path:
    report_path.write_text(render_summary(summary, title, inputs, report_path.parent), encoding="utf-8")
    return report_path


def _format_percent(value: float) -> str:
    return f"{value:.1f}"


def _format_level(value: Optional[int]) -> str:
    if value is None:
        return "lossless"
    return str(value)
