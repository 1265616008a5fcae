"""优化层级标记及其与元数据文本字段之间的转换。"""

from __future__ import annotations

from enum import IntEnum
from typing import Optional

OPTIMIZED_MARKER = "philoassets-optimized"
AGGRESSIVE_MARKER = "philoassets-aggressive"


class Tier(IntEnum):
    """文件已经历的优化阶段，数值越大层级越高。"""

    NONE = 0
    OPTIMIZED = 1
    AGGRESSIVE = 2


_TIER_TO_TEXT = {
    Tier.OPTIMIZED: OPTIMIZED_MARKER,
    Tier.AGGRESSIVE: AGGRESSIVE_MARKER,
}
_TEXT_TO_TIER = {text: tier for tier, text in _TIER_TO_TEXT.items()}


def tier_to_text(tier: Tier) -> str:
    """将层级序列化为写入 Comment 字段的文本。"""

    try:
        return _TIER_TO_TEXT[tier]
    except KeyError:
        raise ValueError(f"层级 {tier.name} 没有对应的标记文本") from None


def text_to_tier(value: Optional[object]) -> Tier:
    """解析元数据中的文本，未知内容一律视为未标记。"""

    if value is None:
        return Tier.NONE
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="ignore")
    return _TEXT_TO_TIER.get(str(value).strip(), Tier.NONE)
