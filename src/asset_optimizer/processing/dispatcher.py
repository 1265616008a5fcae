"""有界并发调度：同一时刻最多执行 limit 个任务。"""

from __future__ import annotations

import logging
import os
from concurrent.futures import FIRST_COMPLETED, Executor, Future, ProcessPoolExecutor, wait
from typing import Callable, Iterable, Optional, Sequence

from asset_optimizer.core.models import Job, JobResult, JobStatus
from asset_optimizer.processing.worker import lower_priority

LOGGER = logging.getLogger(__name__)

JobRunner = Callable[[Job], JobResult]
ExecutorFactory = Callable[[int], Executor]
ResultCallback = Optional[Callable[[JobResult], None]]


def effective_concurrency(requested: int, cpu_count: Optional[int] = None) -> int:
    """将请求的并发数限制在 CPU 核数的四分之一以内，至少为 1。"""

    cores = cpu_count if cpu_count is not None else (os.cpu_count() or 2)
    ceiling = max(1, cores // 4)
    return max(1, min(requested, ceiling))


def default_executor(limit: int) -> Executor:
    return ProcessPoolExecutor(max_workers=limit, initializer=lower_priority)


def dispatch(
    jobs: Sequence[Job],
    runner: JobRunner,
    limit: int,
    executor_factory: ExecutorFactory = default_executor,
    on_result: ResultCallback = None,
) -> list[JobResult]:
    """执行所有任务，每个任务恰好产生一个结果；结果顺序与提交顺序无关。

    ``limit`` 为 1 时在当前进程内顺序执行，执行前同样降低调度优先级。
    """

    results: list[JobResult] = []
    if not jobs:
        return results

    if limit <= 1:
        # 顺序模式下当前进程就是工作进程
        lower_priority()
        for job in jobs:
            _collect(_run_isolated(runner, job), results, on_result)
        return results

    with executor_factory(limit) as executor:
        in_flight: dict[Future, Job] = {}
        for job in jobs:
            if len(in_flight) >= limit:
                _drain(in_flight, wait(in_flight, return_when=FIRST_COMPLETED).done, results, on_result)
            in_flight[executor.submit(runner, job)] = job
        _drain(in_flight, wait(in_flight).done, results, on_result)

    return results


def _drain(
    in_flight: dict[Future, Job],
    done: Iterable[Future],
    results: list[JobResult],
    on_result: ResultCallback,
) -> None:
    for future in done:
        job = in_flight.pop(future)
        try:
            result = future.result()
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("任务执行异常：%s", exc)
            result = _failed(job, exc)
        _collect(result, results, on_result)


def _run_isolated(runner: JobRunner, job: Job) -> JobResult:
    try:
        return runner(job)
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("任务执行异常：%s", exc)
        return _failed(job, exc)


def _failed(job: Job, exc: BaseException) -> JobResult:
    return JobResult(
        status=JobStatus.FAIL,
        relative_path=job.item.relative_path,
        original_size=job.item.size_bytes,
        message=str(exc),
    )


def _collect(result: JobResult, results: list[JobResult], on_result: ResultCallback) -> None:
    results.append(result)
    if on_result:
        on_result(result)
