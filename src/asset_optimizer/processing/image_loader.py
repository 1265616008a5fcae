"""图片加载与色彩空间归一化。"""

from __future__ import annotations

import io
import logging
from pathlib import Path

from PIL import Image, ImageCms, ImageOps, UnidentifiedImageError

from asset_optimizer.core.exceptions import TransformError

LOGGER = logging.getLogger(__name__)

_SRGB_PROFILE = ImageCms.createProfile("sRGB")


class ImageLoadingError(TransformError):
    """图片加载失败。"""


def load_image(path: Path, keep_alpha: bool = False) -> Image.Image:
    """加载单张图片并执行 EXIF 旋转与 sRGB 归一化。

    ``keep_alpha`` 为 False 时透明通道会合成到白色背景上（用于 JPEG）。
    返回值为新的 Image 对象，调用者负责关闭。
    """

    try:
        with Image.open(path) as img:
            img.load()

            # 输出会去除元数据，因此需先应用 EXIF Orientation
            img = ImageOps.exif_transpose(img)
            img = to_srgb(img)
            img = _convert_mode(img, keep_alpha)
            return img.copy()
    except (UnidentifiedImageError, OSError) as exc:
        LOGGER.debug("无法识别图像文件 %s: %s", path, exc)
        raise ImageLoadingError(f"无法加载图像: {path}") from exc


def to_srgb(img: Image.Image) -> Image.Image:
    """带有 ICC 配置文件的图像转换到 sRGB，其余保持不变。"""

    icc = img.info.get("icc_profile")
    if not icc or img.mode not in {"RGB", "RGBA", "CMYK", "L"}:
        return img

    output_mode = "RGBA" if img.mode == "RGBA" else "RGB"
    try:
        source_profile = ImageCms.ImageCmsProfile(io.BytesIO(icc))
        return ImageCms.profileToProfile(img, source_profile, _SRGB_PROFILE, outputMode=output_mode)
    except (ImageCms.PyCMSError, OSError) as exc:
        LOGGER.debug("ICC 转换失败，直接转换模式: %s", exc)
        return img.convert(output_mode)


def _convert_mode(img: Image.Image, keep_alpha: bool) -> Image.Image:
    has_alpha = img.mode in {"RGBA", "LA"} or (img.mode == "P" and "transparency" in img.info)

    if keep_alpha:
        if img.mode in {"RGB", "RGBA", "L", "LA", "P"}:
            return img
        return img.convert("RGBA" if has_alpha else "RGB")

    if has_alpha:
        # 透明区域通过白色背景混合生成 RGB。
        rgba = img.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[-1])
        return background

    if img.mode != "RGB":
        return img.convert("RGB")
    return img
