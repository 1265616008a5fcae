"""文件扫描与相对路径解析。"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator, Sequence

from asset_optimizer.core.models import SourceFile

LOGGER = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp"}


def _iter_directory(path: Path, recursive: bool) -> Iterator[Path]:
    """遍历目录下的所有文件。"""

    iterator = path.rglob("*") if recursive else path.glob("*")
    for candidate in iterator:
        if candidate.is_file():
            yield candidate


def is_supported_image(path: Path) -> bool:
    return path.suffix.lower() in IMAGE_EXTENSIONS


def collect_source_files(sources: Sequence[Path], recursive: bool) -> list[SourceFile]:
    """扫描输入路径，返回受支持的图片文件及其相对路径。

    目录输入按扩展名过滤；单独给出的文件若扩展名不受支持则记录警告并忽略。
    相对路径去掉所属目录输入的前缀，不属于任何目录输入时退化为文件名。
    """

    files: list[Path] = []
    input_dirs: list[Path] = []

    for source in sources:
        resolved = source.expanduser().resolve()
        if resolved.is_file():
            if is_supported_image(resolved):
                files.append(resolved)
            else:
                LOGGER.warning("跳过不支持的文件: %s", source)
        elif resolved.is_dir():
            input_dirs.append(resolved)
            files.extend(
                candidate for candidate in _iter_directory(resolved, recursive) if is_supported_image(candidate)
            )

    collected: list[SourceFile] = []
    seen_paths: set[Path] = set()
    for candidate in files:
        if candidate in seen_paths:
            continue
        seen_paths.add(candidate)
        collected.append(SourceFile(absolute_path=candidate, relative_path=_relative_path(candidate, input_dirs)))

    collected.sort(key=lambda x: str(x.absolute_path).lower())
    return collected


def _relative_path(candidate: Path, input_dirs: Sequence[Path]) -> Path:
    for root in input_dirs:
        try:
            return candidate.relative_to(root)
        except ValueError:
            continue
    return Path(candidate.name)
