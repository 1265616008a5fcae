"""调用外部命令行工具的编码后端。

依赖：ImageMagick (convert/identify)、jpegoptim、optipng、gifsicle、cwebp，
以及所有后端都需要的 exiftool。
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Sequence

from asset_optimizer.core.config import QualityConfig
from asset_optimizer.core.exceptions import MissingDependencyError, TransformError
from asset_optimizer.processing.codecs import Dimensions, ImageFormat, webp_sibling

LOGGER = logging.getLogger(__name__)

# 可执行文件 -> 发行版软件包名
COMMON_TOOLS = {"exiftool": "libimage-exiftool-perl"}
TOOLCHAIN_TOOLS = {
    "convert": "imagemagick",
    "identify": "imagemagick",
    "jpegoptim": "jpegoptim",
    "optipng": "optipng",
    "gifsicle": "gifsicle",
    "cwebp": "webp",
}

INSTALL_HINT = "sudo apt-get install imagemagick jpegoptim optipng gifsicle webp libimage-exiftool-perl"


def check_dependencies(backend: str) -> None:
    """检查所选后端需要的外部工具，缺失时抛出 :class:`MissingDependencyError`。"""

    required = dict(COMMON_TOOLS)
    if backend == "toolchain":
        required.update(TOOLCHAIN_TOOLS)

    missing = sorted({package for tool, package in required.items() if shutil.which(tool) is None})
    if missing:
        raise MissingDependencyError(missing)


def _run(cmd: Sequence[str]) -> subprocess.CompletedProcess:
    LOGGER.debug("执行命令: %s", " ".join(cmd))
    return subprocess.run(list(cmd), capture_output=True, text=True, check=False)


def _run_checked(cmd: Sequence[str]) -> None:
    try:
        result = _run(cmd)
    except OSError as exc:
        raise TransformError(f"无法执行 {cmd[0]}: {exc}") from exc
    if result.returncode != 0:
        detail = (result.stderr or "").strip()
        raise TransformError(f"{cmd[0]} 返回 {result.returncode}: {detail}")


class ToolchainCodec:
    """按格式组合 ImageMagick 与各无损优化工具。"""

    def transform(self, input_path: Path, output_path: Path, fmt: ImageFormat, params: QualityConfig) -> None:
        if fmt is ImageFormat.JPEG:
            self._optimize_jpeg(input_path, output_path, params)
        elif fmt is ImageFormat.PNG:
            self._optimize_png(input_path, output_path, params)
        elif fmt is ImageFormat.GIF:
            self._optimize_gif(input_path, output_path, params)
        elif fmt is ImageFormat.WEBP:
            self._optimize_webp(input_path, output_path, params)
        else:
            raise TransformError(f"不支持的格式: {fmt}")

    def encode_webp(self, input_path: Path, output_path: Path, quality: int) -> None:
        _run_checked(["cwebp", "-q", str(quality), "-quiet", str(input_path), "-o", str(output_path)])

    def probe_dimensions(self, paths: Sequence[Path]) -> dict[Path, Dimensions]:
        """一次 identify 调用读取所有文件的尺寸；多帧图片只取第一帧。"""

        dimensions: dict[Path, Dimensions] = {path: None for path in paths}
        if not paths:
            return dimensions

        try:
            result = _run(["identify", "-format", "%i|%w|%h\n", *[str(path) for path in paths]])
        except OSError as exc:
            LOGGER.warning("identify 执行失败：%s", exc)
            return dimensions

        by_name = {str(path): path for path in paths}
        for line in result.stdout.splitlines():
            name, sep, rest = line.partition("|")
            path = by_name.get(name)
            if not sep or path is None or dimensions[path] is not None:
                continue
            width, _, height = rest.partition("|")
            try:
                dimensions[path] = (int(width), int(height))
            except ValueError:
                continue
        return dimensions

    def _resize_arg(self, params: QualityConfig) -> str:
        # ">" 仅在超出时缩小
        return f"{params.max_dimension}x{params.max_dimension}>"

    def _optimize_jpeg(self, input_path: Path, output_path: Path, params: QualityConfig) -> None:
        _run_checked(
            [
                "convert",
                str(input_path),
                "-colorspace",
                "sRGB",
                "-resize",
                self._resize_arg(params),
                "-quality",
                str(params.jpeg_quality),
                "-strip",
                str(output_path),
            ]
        )
        _run_checked(["jpegoptim", "--quiet", "--strip-all", str(output_path)])
        if params.generate_webp:
            self.encode_webp(output_path, webp_sibling(output_path), params.webp_quality)

    def _optimize_png(self, input_path: Path, output_path: Path, params: QualityConfig) -> None:
        _run_checked(
            [
                "convert",
                str(input_path),
                "-colorspace",
                "sRGB",
                "-resize",
                self._resize_arg(params),
                "-strip",
                str(output_path),
            ]
        )
        # 只做无损优化，不使用 pngquant 之类的量化工具
        _run_checked(["optipng", "-quiet", "-o2", str(output_path)])
        if params.generate_webp:
            self.encode_webp(output_path, webp_sibling(output_path), params.webp_quality)

    def _optimize_gif(self, input_path: Path, output_path: Path, params: QualityConfig) -> None:
        _run_checked(["gifsicle", "--optimize=3", str(input_path), "-o", str(output_path)])
        if not params.generate_webp:
            return

        handle = tempfile.NamedTemporaryFile(dir=output_path.parent, prefix=".gifframe-", suffix=".png", delete=False)
        handle.close()
        frame_path = Path(handle.name)
        try:
            _run_checked(["convert", f"{input_path}[0]", "-resize", self._resize_arg(params), str(frame_path)])
            self.encode_webp(frame_path, webp_sibling(output_path), params.webp_quality)
        finally:
            frame_path.unlink(missing_ok=True)

    def _optimize_webp(self, input_path: Path, output_path: Path, params: QualityConfig) -> None:
        quality = str(params.webp_quality)
        try:
            _run_checked(
                [
                    "cwebp",
                    "-q",
                    quality,
                    "-quiet",
                    "-resize",
                    str(params.max_dimension),
                    "0",
                    str(input_path),
                    "-o",
                    str(output_path),
                ]
            )
        except TransformError as exc:
            LOGGER.debug("cwebp 不接受缩放参数，改为仅重新压缩: %s", exc)
            _run_checked(["cwebp", "-q", quality, "-quiet", str(input_path), "-o", str(output_path)])
