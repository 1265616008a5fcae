"""各图片格式的编码策略（Pillow 实现）。"""

from __future__ import annotations

import logging
import tempfile
from enum import Enum
from pathlib import Path
from typing import Optional, Protocol, Sequence

from PIL import Image, ImageSequence, UnidentifiedImageError

from asset_optimizer.core.config import QualityConfig
from asset_optimizer.core.exceptions import TransformError
from asset_optimizer.processing.image_loader import load_image

LOGGER = logging.getLogger(__name__)

Dimensions = Optional[tuple[int, int]]

# Pillow 的 WebP 编码器速度/压缩率取舍，6 为最慢但最小。
WEBP_METHOD = 6

_CODEC_ERRORS = (OSError, ValueError, Image.DecompressionBombError)


class ImageFormat(str, Enum):
    JPEG = "jpeg"
    PNG = "png"
    GIF = "gif"
    WEBP = "webp"

    @classmethod
    def from_path(cls, path: Path) -> "ImageFormat":
        suffix = path.suffix.lower()
        if suffix in {".jpg", ".jpeg"}:
            return cls.JPEG
        if suffix == ".png":
            return cls.PNG
        if suffix == ".gif":
            return cls.GIF
        if suffix == ".webp":
            return cls.WEBP
        raise TransformError(f"不支持的格式: {suffix}")


class Codec(Protocol):
    """编码后端接口。失败时抛出 :class:`TransformError`。"""

    def transform(self, input_path: Path, output_path: Path, fmt: ImageFormat, params: QualityConfig) -> None:
        ...

    def encode_webp(self, input_path: Path, output_path: Path, quality: int) -> None:
        ...

    def probe_dimensions(self, paths: Sequence[Path]) -> dict[Path, Dimensions]:
        ...


def compression_level(fmt: ImageFormat, params: QualityConfig) -> Optional[int]:
    """报告中记录的压缩级别；PNG 与 GIF 为无损处理，没有质量参数。"""

    if fmt is ImageFormat.JPEG:
        return params.jpeg_quality
    if fmt is ImageFormat.WEBP:
        return params.webp_quality
    return None


def webp_sibling(output_path: Path) -> Path:
    return output_path.with_suffix(".webp")


class PillowCodec:
    """进程内的 Pillow 编码后端。"""

    def transform(self, input_path: Path, output_path: Path, fmt: ImageFormat, params: QualityConfig) -> None:
        handlers = {
            ImageFormat.JPEG: self._optimize_jpeg,
            ImageFormat.PNG: self._optimize_png,
            ImageFormat.GIF: self._optimize_gif,
            ImageFormat.WEBP: self._optimize_webp,
        }
        try:
            handlers[fmt](input_path, output_path, params)
        except TransformError:
            raise
        except _CODEC_ERRORS as exc:
            raise TransformError(f"{fmt.value} 编码失败: {input_path}: {exc}") from exc

    def encode_webp(self, input_path: Path, output_path: Path, quality: int) -> None:
        image = load_image(input_path, keep_alpha=True)
        try:
            _save_webp(image, output_path, quality)
        except _CODEC_ERRORS as exc:
            raise TransformError(f"WebP 编码失败: {input_path}: {exc}") from exc
        finally:
            image.close()

    def probe_dimensions(self, paths: Sequence[Path]) -> dict[Path, Dimensions]:
        """只读取文件头获得像素尺寸，不做完整解码。"""

        dimensions: dict[Path, Dimensions] = {}
        for path in paths:
            try:
                with Image.open(path) as img:
                    dimensions[path] = img.size
            except (UnidentifiedImageError, OSError) as exc:
                LOGGER.debug("无法读取尺寸 %s: %s", path, exc)
                dimensions[path] = None
        return dimensions

    def _optimize_jpeg(self, input_path: Path, output_path: Path, params: QualityConfig) -> None:
        image = load_image(input_path)
        try:
            image = _downscale(image, params.max_dimension)
            _strip_metadata(image)
            # optimize=True 让 libjpeg 额外扫描一遍以生成最优 Huffman 表（无损）。
            image.save(output_path, format="JPEG", quality=params.jpeg_quality, optimize=True)
            if params.generate_webp:
                _save_webp(image, webp_sibling(output_path), params.webp_quality)
        finally:
            image.close()

    def _optimize_png(self, input_path: Path, output_path: Path, params: QualityConfig) -> None:
        image = load_image(input_path, keep_alpha=True)
        try:
            image = _downscale(image, params.max_dimension)
            _strip_metadata(image)
            # 只做无损压缩，不做调色板量化以保持色彩。
            image.save(output_path, format="PNG", optimize=True)
            if params.generate_webp:
                _save_webp(image, webp_sibling(output_path), params.webp_quality)
        finally:
            image.close()

    def _optimize_gif(self, input_path: Path, output_path: Path, params: QualityConfig) -> None:
        with Image.open(input_path) as img:
            animated = getattr(img, "n_frames", 1) > 1
            save_params = {"optimize": True, "save_all": animated}
            if animated:
                # 逐帧保留时长与处置方式，否则所有帧都会沿用第一帧的时长
                save_params["duration"], save_params["disposal"] = _frame_timing(img)
            elif "duration" in img.info:
                save_params["duration"] = img.info["duration"]
            if "loop" in img.info:
                save_params["loop"] = img.info["loop"]
            img.save(output_path, format="GIF", **save_params)

        if params.generate_webp:
            self._gif_preview(input_path, webp_sibling(output_path), params)

    def _gif_preview(self, input_path: Path, sibling: Path, params: QualityConfig) -> None:
        """用第一帧生成静态 WebP 预览，中间帧文件在任何情况下都会删除。"""

        handle = tempfile.NamedTemporaryFile(dir=sibling.parent, prefix=".gifframe-", suffix=".png", delete=False)
        handle.close()
        frame_path = Path(handle.name)
        try:
            with Image.open(input_path) as img:
                img.seek(0)
                frame = img.convert("RGBA")
            frame = _downscale(frame, params.max_dimension)
            frame.save(frame_path, format="PNG")
            frame.close()

            with Image.open(frame_path) as frame_img:
                frame_img.load()
                _save_webp(frame_img, sibling, params.webp_quality)
        finally:
            frame_path.unlink(missing_ok=True)

    def _optimize_webp(self, input_path: Path, output_path: Path, params: QualityConfig) -> None:
        try:
            self._recompress_webp(input_path, output_path, params.webp_quality, params.max_dimension)
        except _CODEC_ERRORS as exc:
            LOGGER.debug("WebP 缩放失败，改为仅重新压缩 %s: %s", input_path, exc)
            self._recompress_webp(input_path, output_path, params.webp_quality, None)

    def _recompress_webp(
        self,
        input_path: Path,
        output_path: Path,
        quality: int,
        max_dimension: Optional[int],
    ) -> None:
        if max_dimension is None:
            with Image.open(input_path) as img:
                animated = getattr(img, "n_frames", 1) > 1
                img.save(output_path, format="WEBP", quality=quality, method=WEBP_METHOD, save_all=animated)
            return

        with Image.open(input_path) as img:
            if getattr(img, "n_frames", 1) > 1:
                raise ValueError("动画 WebP 不支持缩放")

        image = load_image(input_path, keep_alpha=True)
        try:
            image = _downscale(image, max_dimension)
            _strip_metadata(image)
            _save_webp(image, output_path, quality)
        finally:
            image.close()


def _downscale(image: Image.Image, max_dimension: int) -> Image.Image:
    """等比缩小到最长边不超过 max_dimension，从不放大。"""

    if max(image.size) <= max_dimension:
        return image
    image.thumbnail((max_dimension, max_dimension), Image.LANCZOS)
    return image


def _frame_timing(img: Image.Image) -> tuple[list[int], list[int]]:
    """读取每一帧的时长与处置方式，结束后回到第一帧。

    帧透明色由 Pillow 在保存时从各帧的 info 中读取。
    """

    durations: list[int] = []
    disposals: list[int] = []
    for frame in ImageSequence.Iterator(img):
        durations.append(frame.info.get("duration", 0))
        disposals.append(getattr(frame, "disposal_method", 0))
    img.seek(0)
    return durations, disposals


def _strip_metadata(image: Image.Image) -> None:
    transparency = image.info.get("transparency")
    image.info.clear()
    if transparency is not None:
        image.info["transparency"] = transparency


def _save_webp(image: Image.Image, destination: Path, quality: int) -> None:
    to_save = image
    if image.mode not in {"RGB", "RGBA"}:
        has_alpha = image.mode in {"LA", "PA"} or "transparency" in image.info
        to_save = image.convert("RGBA" if has_alpha else "RGB")
    to_save.save(destination, format="WEBP", quality=quality, method=WEBP_METHOD)
