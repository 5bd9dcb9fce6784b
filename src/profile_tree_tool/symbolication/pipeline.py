# -*- coding: utf-8 -*-
"""
profile 符号化流水线

对每个线程、每个库并发执行：
  1. 取库的函数起始地址表，合并落在同一函数内的 func
  2. 按合并后的代表地址取符号名并回填
每完成一个库就发布一次完整的 profile 快照 (快照本身不可变)。
"""

import asyncio
import logging
from dataclasses import replace
from typing import AsyncIterator, Callable, Dict, List, Optional

import numpy as np

from ..exceptions import ProfileTreeError
from ..models import Library, Profile, Thread
from .batching import FunctionsUpdateBatcher
from .coordinator import (
    SymbolResolutionCoordinator, apply_function_merging, gather_addresses_in_thread,
    merge_functions, set_func_names,
)

logger = logging.getLogger(__name__)

# (新线程, 本次重命名的函数数, 本次合并掉的函数数)
ThreadUpdateCallback = Callable[[Thread, int, int], None]


class _ThreadState:
    """一个线程在符号化过程中的当前状态"""

    def __init__(self, thread: Thread):
        self.original = thread
        self.thread = thread
        # 原始 func 下标 -> 当前 func 下标
        self.func_remap = np.arange(len(thread.func_table), dtype=np.int64)


async def _symbolicate_library(state: _ThreadState, lib: Library, func_indices: List[int],
                               coordinator: SymbolResolutionCoordinator,
                               on_update: Optional[ThreadUpdateCallback]) -> None:
    try:
        address_table = await coordinator.get_func_address_table(lib)
    except ProfileTreeError as e:
        logger.warning(f"线程 {state.original.name}: 跳过库 {lib.debug_name}, 保留原始地址 ({e})")
        return

    # await 之间的同步代码不会被其他库的任务打断
    addresses = state.original.func_table.to_list('address')
    current_to_original: Dict[int, int] = {}
    batch = []
    for original_func in func_indices:
        current_func = int(state.func_remap[original_func])
        if current_func not in current_to_original:
            current_to_original[current_func] = original_func
            batch.append((current_func, addresses[original_func]))
    merge = merge_functions(address_table, batch)
    state.thread, remap = apply_function_merging(state.thread, merge.old_func_to_new_func)
    state.func_remap = remap[state.func_remap]
    representatives = {symbol_index: current_to_original[func]
                       for symbol_index, func in merge.addr_to_func_index.items()}
    merged_count = len(merge.old_func_to_new_func)

    names: List[str] = []
    if representatives:
        try:
            names = await coordinator.get_symbols(lib, sorted(representatives))
        except ProfileTreeError as e:
            logger.warning(f"线程 {state.original.name}: 获取库 {lib.debug_name} 的符号名失败 ({e})")
            representatives = {}

    if representatives:
        targets = {symbol_index: int(state.func_remap[original_func])
                   for symbol_index, original_func in representatives.items()}
        state.thread = set_func_names(state.thread, targets, names)
    logger.info(f"线程 {state.original.name}: 库 {lib.debug_name} 完成, "
                f"重命名 {len(representatives)} 个函数, 合并 {merged_count} 个函数")
    if on_update is not None:
        on_update(state.thread, len(representatives), merged_count)


async def symbolicate_thread(thread: Thread, coordinator: SymbolResolutionCoordinator,
                             on_update: Optional[ThreadUpdateCallback] = None) -> Thread:
    """
    符号化一个线程

    Args:
        thread: 预处理格式的线程，不会被修改
        coordinator: 符号解析协调器
        on_update: 每完成一个库调用一次

    Returns:
        Thread: 符号化完成后的线程；失败的库保留原始地址名
    """
    state = _ThreadState(thread)
    found = gather_addresses_in_thread(thread)
    if not found:
        return thread
    logger.debug(f"线程 {thread.name}: {len(found)} 个库待符号化")
    await asyncio.gather(*(
        _symbolicate_library(state, lib, func_indices, coordinator, on_update)
        for lib, func_indices in found.items()
    ))
    return state.thread


async def symbolicate_profile(profile: Profile, coordinator: SymbolResolutionCoordinator,
                              on_update: Optional[Callable[[Profile], None]] = None,
                              on_thread_update: Optional[Callable[[int, Thread, int, int], None]] = None) -> Profile:
    """
    并发符号化 profile 的所有线程

    Args:
        profile: 输入 profile，不会被修改
        coordinator: 符号解析协调器
        on_update: 每完成一个 (线程, 库) 调用一次，参数为完整的 profile 快照
        on_thread_update: 每完成一个 (线程, 库) 调用一次，参数为 (线程下标, 新线程, 重命名数, 合并数)

    Returns:
        Profile: 最终的 profile
    """
    current = {'profile': profile}

    def _make_callback(thread_index: int) -> ThreadUpdateCallback:
        def _callback(thread: Thread, renamed: int, merged: int) -> None:
            threads = list(current['profile'].threads)
            threads[thread_index] = thread
            current['profile'] = replace(current['profile'], threads=threads)
            if on_thread_update is not None:
                on_thread_update(thread_index, thread, renamed, merged)
            if on_update is not None:
                on_update(current['profile'])
        return _callback

    threads = await asyncio.gather(*(
        symbolicate_thread(thread, coordinator, _make_callback(thread_index))
        for thread_index, thread in enumerate(profile.threads)
    ))
    return replace(profile, threads=list(threads))


class ProfileSymbolicationPipeline:
    """
    以流的形式对外提供符号化进度

    用法:
        pipeline = ProfileSymbolicationPipeline(profile, coordinator)
        async for snapshot in pipeline.snapshots():
            ...
        或直接 final = await pipeline.run()
    """

    def __init__(self, profile: Profile, coordinator: SymbolResolutionCoordinator,
                 batcher: Optional[FunctionsUpdateBatcher] = None):
        self.profile = profile
        self.coordinator = coordinator
        self.batcher = batcher
        self.result: Optional[Profile] = None

    async def run(self, on_update: Optional[Callable[[Profile], None]] = None) -> Profile:
        on_thread_update = self.batcher.enqueue if self.batcher is not None else None
        self.result = await symbolicate_profile(self.profile, self.coordinator,
                                                on_update=on_update, on_thread_update=on_thread_update)
        return self.result

    async def snapshots(self) -> AsyncIterator[Profile]:
        """逐个产出快照，全部完成后结束；运行中的异常会在迭代结束时抛出"""
        queue: asyncio.Queue = asyncio.Queue()
        done = object()

        async def _drive() -> Profile:
            try:
                return await self.run(on_update=queue.put_nowait)
            finally:
                queue.put_nowait(done)

        task = asyncio.ensure_future(_drive())
        try:
            while True:
                snapshot = await queue.get()
                if snapshot is done:
                    break
                yield snapshot
        finally:
            if not task.done():
                task.cancel()
        await task
