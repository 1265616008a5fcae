"""日志初始化。"""

from __future__ import annotations

import logging

NOISY_LOGGERS = ("PIL", "exiftool")


def setup_logging(verbose: bool = False) -> None:
    """初始化项目日志配置，格式中带进程名以区分进程池中的工作进程。"""

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(processName)s] %(levelname)s %(name)s: %(message)s",
    )
    # 第三方库的调试输出过多
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.INFO)
