"""流水线：幂等性、失败隔离、激进阶段与报告。"""

from __future__ import annotations

import csv
from pathlib import Path

import pytest

from asset_optimizer.core.config import AggressiveConfig, QualityConfig, RunConfig
from asset_optimizer.core.exceptions import InvalidConfigurationError
from asset_optimizer.core.markers import Tier
from asset_optimizer.processing.pipeline import process_batch
from asset_optimizer.processing.worker import Toolkit
from asset_optimizer.testing.fakes import FakeCodec, InMemoryMetadataStore


def make_config(source: Path, tmp_path: Path, **overrides) -> RunConfig:
    params = dict(
        sources=[source],
        output_dir=tmp_path / "optimized",
        size_threshold=1000,
        quality=QualityConfig(),
        aggressive=AggressiveConfig(output_dir=tmp_path / "aggressive"),
        jobs=1,
    )
    params.update(overrides)
    return RunConfig(**params)


def make_toolkit(**codec_options) -> Toolkit:
    return Toolkit(codec=FakeCodec(**codec_options), metadata=InMemoryMetadataStore())


def populate(source: Path, sizes: dict[str, int]) -> None:
    source.mkdir(parents=True, exist_ok=True)
    for name, size in sizes.items():
        (source / name).write_bytes(b"x" * size)


def test_second_run_processes_nothing(tmp_path: Path) -> None:
    source = tmp_path / "input"
    populate(source, {"big.jpg": 4000, "small.jpg": 10})
    config = make_config(source, tmp_path)
    toolkit = make_toolkit()

    first = process_batch(config, toolkit=toolkit)
    assert [r.relative_path for r in first.optimize.succeeded] == [Path("big.jpg")]
    assert first.optimize.skipped_count == 1

    output = tmp_path / "optimized" / "big.jpg"
    assert output.stat().st_size == 2000
    assert toolkit.metadata.markers[output.resolve()] is Tier.OPTIMIZED

    second = process_batch(config, toolkit=toolkit)
    assert second.optimize.results == []
    assert second.optimize.skipped_count == 2


def test_marker_on_input_prevents_reprocessing(tmp_path: Path) -> None:
    source = tmp_path / "input"
    populate(source, {"photo.jpg": 4000})
    toolkit = make_toolkit()
    toolkit.metadata.set(source / "photo.jpg", Tier.OPTIMIZED)

    result = process_batch(make_config(source, tmp_path), toolkit=toolkit)

    assert result.optimize.results == []
    assert not (tmp_path / "optimized" / "photo.jpg").exists()


def test_single_failure_is_isolated(tmp_path: Path) -> None:
    source = tmp_path / "input"
    populate(source, {"a.jpg": 3000, "b.jpg": 3000, "c.png": 3000, "d.gif": 3000})
    toolkit = make_toolkit(fail_on={"b.jpg"})

    result = process_batch(make_config(source, tmp_path), toolkit=toolkit)

    assert len(result.optimize.results) == 4
    assert [r.relative_path for r in result.optimize.failed] == [Path("b.jpg")]
    assert len(result.optimize.succeeded) == 3
    assert result.failed_count == 1
    # 失败的任务不会写入标记
    assert (tmp_path / "optimized" / "b.jpg").resolve() not in toolkit.metadata.markers

    summary = result.optimize.summary
    assert summary is not None
    assert (summary.processed, summary.skipped, summary.failed) == (3, 0, 1)


def test_marker_write_failure_fails_the_job(tmp_path: Path) -> None:
    source = tmp_path / "input"
    populate(source, {"a.jpg": 3000})
    toolkit = make_toolkit()
    toolkit.metadata.fail_writes = True

    result = process_batch(make_config(source, tmp_path), toolkit=toolkit)

    assert result.failed_count == 1
    assert "模拟写入失败" in result.optimize.failed[0].message


def test_reports_are_written(tmp_path: Path) -> None:
    source = tmp_path / "input"
    populate(source, {"a.jpg": 3000, "b.png": 5000})

    result = process_batch(make_config(source, tmp_path), toolkit=make_toolkit())

    csv_path = tmp_path / "optimized" / "optimization-report.csv"
    txt_path = tmp_path / "optimized" / "optimization-report.txt"
    assert set(result.optimize.report_paths) == {txt_path.resolve(), csv_path.resolve()}

    with csv_path.open(encoding="utf-8") as handle:
        rows = list(csv.DictReader(handle))
    assert [row["relative_path"] for row in rows] == ["a.jpg", "b.png"]
    assert rows[0]["original_size"] == "3000"
    assert rows[0]["optimized_size"] == "1500"
    assert rows[0]["percent_saved"] == "50.0"
    assert rows[0]["compression_level"] == "92"
    assert rows[1]["compression_level"] == "lossless"

    text = txt_path.read_text(encoding="utf-8")
    assert "Images processed: 2" in text
    assert "Images failed: 0" in text


def test_dry_run_makes_no_changes(tmp_path: Path) -> None:
    source = tmp_path / "input"
    populate(source, {"big.jpg": 4000, "small.jpg": 10})
    toolkit = make_toolkit()

    result = process_batch(make_config(source, tmp_path, dry_run=True), toolkit=toolkit)

    assert result.optimize.dry_run
    assert [job.item.relative_path for job in result.optimize.planned] == [Path("big.jpg")]
    assert result.optimize.skipped_count == 1
    assert not (tmp_path / "optimized").exists()
    assert toolkit.codec.transforms == []


def test_invalid_input_aborts_before_processing(tmp_path: Path) -> None:
    config = make_config(tmp_path / "missing", tmp_path)

    with pytest.raises(InvalidConfigurationError):
        process_batch(config, toolkit=make_toolkit())

    assert not (tmp_path / "optimized").exists()


def test_aggressive_pass_runs_on_optimized_output(tmp_path: Path) -> None:
    source = tmp_path / "input"
    populate(source, {"huge.jpg": 4000, "fine.jpg": 1200})
    config = make_config(source, tmp_path, aggressive=AggressiveConfig(enabled=True, output_dir=tmp_path / "aggressive"))
    toolkit = make_toolkit()

    result = process_batch(config, toolkit=toolkit)

    # huge.jpg -> 2000 字节仍超过阈值；fine.jpg -> 600 字节
    assert result.aggressive is not None
    assert [r.relative_path for r in result.aggressive.succeeded] == [Path("huge.webp")]
    agg = result.aggressive.succeeded[0]
    # 2000 * q / 100 始终大于 1000，最终停在下限 75
    assert agg.compression_level == 75
    assert agg.original_size == 2000
    assert agg.new_size == 1500

    output = tmp_path / "aggressive" / "huge.webp"
    assert toolkit.metadata.markers[output.resolve()] is Tier.AGGRESSIVE
    assert toolkit.codec.encodes == [95, 90, 85, 80, 75]
    assert (tmp_path / "aggressive" / "aggressive-report.csv").exists()

    again = process_batch(config, toolkit=toolkit)
    assert again.optimize.results == []
    assert again.aggressive is not None
    assert again.aggressive.results == []


def test_force_reprocesses_everything(tmp_path: Path) -> None:
    source = tmp_path / "input"
    populate(source, {"huge.jpg": 4000})
    aggressive = AggressiveConfig(enabled=True, output_dir=tmp_path / "aggressive")
    toolkit = make_toolkit()
    process_batch(make_config(source, tmp_path, aggressive=aggressive), toolkit=toolkit)

    forced = process_batch(make_config(source, tmp_path, aggressive=aggressive, force=True), toolkit=toolkit)

    assert len(forced.optimize.succeeded) == 1
    assert forced.aggressive is not None
    assert len(forced.aggressive.succeeded) == 1


def test_webp_siblings_are_not_aggressive_candidates(tmp_path: Path) -> None:
    source = tmp_path / "input"
    populate(source, {"huge.png": 8000})
    config = make_config(
        source,
        tmp_path,
        quality=QualityConfig(generate_webp=True),
        aggressive=AggressiveConfig(enabled=True, output_dir=tmp_path / "aggressive"),
    )

    result = process_batch(config, toolkit=make_toolkit())

    assert (tmp_path / "optimized" / "huge.webp").exists()
    assert result.aggressive is not None
    # 未标记的 WebP 副本被跳过
    assert result.aggressive.skipped_count == 1
    assert [r.relative_path for r in result.aggressive.succeeded] == [Path("huge.webp")]


def test_progress_callback_reports_completion(tmp_path: Path) -> None:
    source = tmp_path / "input"
    populate(source, {"a.jpg": 3000, "b.jpg": 3000})
    updates = []

    process_batch(make_config(source, tmp_path), toolkit=make_toolkit(), progress_callback=updates.append)

    assert updates[-1].completed == updates[-1].total == 2
    assert any(update.message and "a.jpg" in update.message for update in updates)


@pytest.mark.parametrize(
    "overrides",
    [
        {"size_threshold": 0},
        {"size_threshold": -1},
        {"jobs": 0},
        {"backend": "imagemagick"},
        {"quality": QualityConfig(jpeg_quality=101)},
        {"aggressive": AggressiveConfig(start_quality=70, floor_quality=75)},
        {"aggressive": AggressiveConfig(step=0)},
    ],
)
def test_invalid_settings_are_rejected(tmp_path: Path, overrides: dict) -> None:
    source = tmp_path / "input"
    populate(source, {"a.jpg": 3000})
    toolkit = make_toolkit()

    with pytest.raises(InvalidConfigurationError):
        process_batch(make_config(source, tmp_path, **overrides), toolkit=toolkit)

    assert toolkit.codec.transforms == []
