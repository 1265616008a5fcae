"""优化任务的配置模型。"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Sequence

from asset_optimizer.core.exceptions import InvalidConfigurationError

DEFAULT_SIZE_THRESHOLD = 1024 * 1024
SUPPORTED_BACKENDS = ("pillow", "toolchain")


class RunMode(str, Enum):
    """批处理阶段：常规优化或激进 WebP 重编码。"""

    NORMAL = "normal"
    AGGRESSIVE = "aggressive"


@dataclass(slots=True, frozen=True)
class QualityConfig:
    """编码质量与尺寸相关配置。"""

    max_dimension: int = 1920
    jpeg_quality: int = 92
    webp_quality: int = 90
    generate_webp: bool = False


@dataclass(slots=True, frozen=True)
class AggressiveConfig:
    """激进压缩阶段配置。"""

    enabled: bool = False
    output_dir: Path = Path("aggressive")
    start_quality: int = 95
    floor_quality: int = 75
    step: int = 5


@dataclass(slots=True, frozen=True)
class RunConfig:
    """单次运行的配置集合，运行期间不可变。"""

    sources: Sequence[Path]
    output_dir: Path
    size_threshold: int = DEFAULT_SIZE_THRESHOLD
    quality: QualityConfig = field(default_factory=QualityConfig)
    aggressive: AggressiveConfig = field(default_factory=AggressiveConfig)
    jobs: int = 3
    recursive: bool = False
    force: bool = False
    dry_run: bool = False
    backend: str = "pillow"
    report_basename: str = "optimization-report"

    def validate(self) -> None:
        """在处理开始前检查配置，任何问题都直接抛出。"""

        if not self.sources:
            raise InvalidConfigurationError("至少需要一个输入文件或目录")
        for source in self.sources:
            if not source.exists():
                raise InvalidConfigurationError(f"输入路径不存在: {source}")

        if self.size_threshold <= 0:
            raise InvalidConfigurationError("大小阈值必须大于 0")
        if self.quality.max_dimension <= 0:
            raise InvalidConfigurationError("最大边长必须大于 0")
        if self.jobs < 1:
            raise InvalidConfigurationError("并发数量必须至少为 1")
        if self.backend not in SUPPORTED_BACKENDS:
            raise InvalidConfigurationError(f"未知的编码后端: {self.backend}")

        for name, value in (
            ("jpeg_quality", self.quality.jpeg_quality),
            ("webp_quality", self.quality.webp_quality),
            ("aggressive_start", self.aggressive.start_quality),
            ("aggressive_floor", self.aggressive.floor_quality),
        ):
            if not 0 <= value <= 100:
                raise InvalidConfigurationError(f"{name} 必须在 0~100 之间: {value}")

        if self.aggressive.floor_quality > self.aggressive.start_quality:
            raise InvalidConfigurationError("激进压缩的质量下限不能高于起始质量")
        if self.aggressive.step <= 0:
            raise InvalidConfigurationError("质量递减步长必须大于 0")
