"""核心数据模型定义。"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from asset_optimizer.core.config import RunMode
from asset_optimizer.core.markers import Tier

if TYPE_CHECKING:
    from asset_optimizer.core.report import RunSummary


class JobStatus(str, Enum):
    OK = "ok"
    FAIL = "fail"


@dataclass(slots=True, frozen=True)
class SourceFile:
    """扫描阶段发现的文件及其相对路径。"""

    absolute_path: Path
    relative_path: Path


@dataclass(slots=True, frozen=True)
class WorkItem:
    """扫描阶段得到的单个图片文件。"""

    absolute_path: Path
    relative_path: Path
    size_bytes: int
    dimensions: Optional[tuple[int, int]] = None
    marker: Tier = Tier.NONE

    @property
    def longest_side(self) -> int:
        if not self.dimensions:
            return 0
        return max(self.dimensions)


@dataclass(slots=True, frozen=True)
class Job:
    """提交给调度器的一个处理单元。"""

    item: WorkItem
    output_path: Path
    mode: RunMode = RunMode.NORMAL


@dataclass(slots=True, frozen=True)
class JobResult:
    """单个任务的处理结果，由唯一的工作进程产生且不再修改。"""

    status: JobStatus
    relative_path: Path
    original_size: int
    new_size: int = 0
    compression_level: Optional[int] = None
    output_path: Optional[Path] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is JobStatus.OK


@dataclass(slots=True, frozen=True)
class Selection:
    """候选筛选的产出：待处理任务与跳过的数量。"""

    jobs: tuple[Job, ...]
    skipped_count: int


@dataclass(slots=True)
class BatchResult:
    """一个阶段（常规或激进）的完整产出。"""

    mode: RunMode
    results: list[JobResult]
    skipped_count: int
    dry_run: bool = False
    planned: tuple[Job, ...] = ()
    summary: Optional[RunSummary] = None
    report_paths: tuple[Path, ...] = ()

    @property
    def succeeded(self) -> list[JobResult]:
        return [result for result in self.results if result.ok]

    @property
    def failed(self) -> list[JobResult]:
        return [result for result in self.results if not result.ok]
