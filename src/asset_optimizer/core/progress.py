"""进度更新的数据模型。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from asset_optimizer.core.config import RunMode


@dataclass(slots=True)
class ProgressUpdate:
    """批处理过程中的进度信息。"""

    total: int
    completed: int
    mode: RunMode = RunMode.NORMAL
    message: Optional[str] = None
