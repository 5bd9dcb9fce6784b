"""
耗时统计工具
"""

import logging
import time
from contextlib import contextmanager

logger = logging.getLogger(__name__)


@contextmanager
def time_code(label: str):
    """在 debug 日志中记录代码块耗时"""
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.debug(f"{label} 耗时 {elapsed_ms:.2f}ms")
