"""文件大小的解析与格式化工具。"""

from __future__ import annotations

import re

from asset_optimizer.core.exceptions import InvalidConfigurationError

SIZE_RE = re.compile(r"^\s*(\d+)\s*([KMG]?B?)\s*$", re.IGNORECASE)

_UNITS = {
    "": 1,
    "B": 1,
    "K": 1024,
    "KB": 1024,
    "M": 1024**2,
    "MB": 1024**2,
    "G": 1024**3,
    "GB": 1024**3,
}


def parse_size(value: str) -> int:
    """将 ``500KB``、``2MB`` 或纯数字解析为字节数（1024 进制）。"""

    if not value:
        raise InvalidConfigurationError("大小阈值不能为空")

    match = SIZE_RE.match(value)
    if not match:
        raise InvalidConfigurationError(f"无法解析大小阈值: {value}")

    number = int(match.group(1))
    unit = match.group(2).upper()
    return number * _UNITS[unit]


def format_size(num_bytes: int) -> str:
    """以两位小数展示字节数，例如 ``1.50MB``。"""

    sign = "-" if num_bytes < 0 else ""
    value = abs(num_bytes)
    if value >= 1024**2:
        whole, frac = divmod(value, 1024**2)
        return f"{sign}{whole}.{frac * 100 // 1024**2:02d}MB"
    if value >= 1024:
        whole, frac = divmod(value, 1024)
        return f"{sign}{whole}.{frac * 100 // 1024:02d}KB"
    return f"{sign}{value}B"
