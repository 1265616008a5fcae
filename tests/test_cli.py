"""命令行：退出码、参数校验与签名命令。"""

from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from asset_optimizer.cli import main as cli_main
from asset_optimizer.core.exceptions import MissingDependencyError
from asset_optimizer.processing.worker import Toolkit
from asset_optimizer.testing.fakes import FakeCodec, InMemoryMetadataStore

runner = CliRunner()


@pytest.fixture
def codec(monkeypatch: pytest.MonkeyPatch) -> FakeCodec:
    fake = FakeCodec()
    monkeypatch.setattr(cli_main, "check_dependencies", lambda backend: None)
    monkeypatch.setattr(
        cli_main,
        "build_toolkit",
        lambda backend: Toolkit(codec=fake, metadata=InMemoryMetadataStore()),
    )
    return fake


def make_source(tmp_path: Path) -> Path:
    source = tmp_path / "input"
    source.mkdir()
    (source / "big.jpg").write_bytes(b"x" * 4000)
    (source / "small.png").write_bytes(b"x" * 10)
    return source


def run_args(source: Path, tmp_path: Path, *extra: str) -> list[str]:
    return ["run", str(source), "-o", str(tmp_path / "out"), "-s", "1KB", "-j", "1", *extra]


def test_run_success(tmp_path: Path, codec: FakeCodec) -> None:
    source = make_source(tmp_path)

    result = runner.invoke(cli_main.app, run_args(source, tmp_path))

    assert result.exit_code == 0, result.output
    assert (tmp_path / "out" / "big.jpg").exists()
    assert (tmp_path / "out" / "optimization-report.csv").exists()
    assert not (tmp_path / "out" / "small.png").exists()


def test_run_dry_run_writes_nothing(tmp_path: Path, codec: FakeCodec) -> None:
    source = make_source(tmp_path)

    result = runner.invoke(cli_main.app, run_args(source, tmp_path, "--dry-run"))

    assert result.exit_code == 0, result.output
    assert "big.jpg" in result.output
    assert not (tmp_path / "out").exists()


def test_failed_file_sets_exit_code(tmp_path: Path, codec: FakeCodec) -> None:
    source = make_source(tmp_path)
    codec.fail_on.add("big.jpg")

    result = runner.invoke(cli_main.app, run_args(source, tmp_path))

    assert result.exit_code == 1


def test_missing_input_is_a_configuration_error(tmp_path: Path, codec: FakeCodec) -> None:
    result = runner.invoke(cli_main.app, run_args(tmp_path / "nope", tmp_path))

    assert result.exit_code == 2
    assert codec.transforms == []


def test_invalid_quality_is_a_configuration_error(tmp_path: Path, codec: FakeCodec) -> None:
    source = make_source(tmp_path)

    result = runner.invoke(cli_main.app, run_args(source, tmp_path, "--aggressive-start", "70"))

    assert result.exit_code == 2


def test_unparseable_threshold(tmp_path: Path, codec: FakeCodec) -> None:
    source = make_source(tmp_path)

    result = runner.invoke(cli_main.app, ["run", str(source), "-s", "lots"])

    assert result.exit_code == 2


def test_missing_tools_abort_before_processing(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    source = make_source(tmp_path)

    def missing(backend: str) -> None:
        raise MissingDependencyError(["libimage-exiftool-perl"])

    monkeypatch.setattr(cli_main, "check_dependencies", missing)

    result = runner.invoke(cli_main.app, run_args(source, tmp_path))

    assert result.exit_code == 1
    assert "libimage-exiftool-perl" in result.output
    assert not (tmp_path / "out").exists()


def test_sign_prints_signed_url(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli_main.time, "time", lambda: 1700000000 - 3600)

    result = runner.invoke(cli_main.app, ["sign", "/dialectica/paper.pdf", "--secret", "s3cret"])

    assert result.exit_code == 0, result.output
    assert result.output.strip() == "/dialectica/paper.pdf?md5=IiQVyevQlFnNHDi7erxbHw&expires=1700000000"


def test_sign_reads_secret_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(cli_main.SECRET_ENV, "s3cret")

    result = runner.invoke(cli_main.app, ["sign", "/dialectica/paper.pdf", "-e", "60"])

    assert result.exit_code == 0, result.output
    assert "md5=" in result.output


def test_sign_requires_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(cli_main.SECRET_ENV, raising=False)

    result = runner.invoke(cli_main.app, ["sign", "/dialectica/paper.pdf"])

    assert result.exit_code == 2


def test_sign_rejects_relative_uri() -> None:
    result = runner.invoke(cli_main.app, ["sign", "paper.pdf", "--secret", "s3cret"])

    assert result.exit_code == 2
