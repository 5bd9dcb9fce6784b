# -*- coding: utf-8 -*-
"""
函数更新批处理

符号化过程中的线程更新可能很密集。批处理器把同一线程的多次更新合并为一条
(保留最新的线程快照，计数累加)，由调用方决定何时 flush。批处理器没有全局状态，
每个使用方持有自己的实例。
"""

import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Optional

from ..models import Profile, Thread

logger = logging.getLogger(__name__)


@dataclass
class FunctionsUpdate:
    thread_index: int
    thread: Thread
    renamed_count: int = 0
    merged_count: int = 0


class FunctionsUpdateBatcher:
    """合并待发布的线程更新"""

    def __init__(self):
        self._pending: Dict[int, FunctionsUpdate] = {}

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    def enqueue(self, thread_index: int, thread: Thread, renamed: int = 0, merged: int = 0) -> None:
        update = self._pending.get(thread_index)
        if update is None:
            self._pending[thread_index] = FunctionsUpdate(thread_index, thread, renamed, merged)
            return
        update.thread = thread
        update.renamed_count += renamed
        update.merged_count += merged

    def flush(self) -> Optional[List[FunctionsUpdate]]:
        """取出所有待发布的更新 (按线程下标排序)，没有更新时返回 None"""
        if not self._pending:
            return None
        batch = [self._pending[thread_index] for thread_index in sorted(self._pending)]
        self._pending = {}
        logger.debug(f"发布 {len(batch)} 个线程的函数更新")
        return batch


def apply_updates(profile: Profile, batch: Optional[List[FunctionsUpdate]]) -> Profile:
    """把一批更新应用到 profile，返回新 profile"""
    if not batch:
        return profile
    threads = list(profile.threads)
    for update in batch:
        threads[update.thread_index] = update.thread
    return replace(profile, threads=threads)
