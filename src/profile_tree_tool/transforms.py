# -*- coding: utf-8 -*-
"""
线程变换

所有变换都返回新的 Thread，输入线程保持不变。
改变了栈或采样栈的变换会重新计算 func stack 表。
"""

import logging
import math
from dataclasses import replace
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .call_tree_builder import CallTreeBuilder
from .columnar import ColumnarTable
from .models import STACK_COLUMNS, Profile, Thread
from .utils.time_code import time_code

logger = logging.getLogger(__name__)


def _frame_func(thread: Thread, frame_funcs: List[Optional[int]], frame: Optional[int]) -> Optional[int]:
    if frame is None or not 0 <= frame < len(frame_funcs):
        return None
    func = frame_funcs[frame]
    if func is None or not 0 <= func < len(thread.func_table):
        return None
    return func


def _with_sample_stacks(thread: Thread, stack_table: ColumnarTable, new_stacks: List[Optional[int]]) -> Thread:
    samples = thread.samples.transform({'stack': lambda _: new_stacks})
    new_thread = replace(thread, stack_table=stack_table, samples=samples, func_stack_table=None)
    return CallTreeBuilder().build(new_thread)


def _map_sample_stacks(thread: Thread, mapping: Sequence[Optional[int]]) -> List[Optional[int]]:
    return [None if stack is None or not 0 <= stack < len(mapping) else mapping[stack]
            for stack in thread.samples.to_list('stack')]


def filter_thread_to_js_only(thread: Thread) -> Thread:
    """只保留 JS 帧，非 JS 帧折叠进其前缀"""
    with time_code('filter_thread_to_js_only'):
        prefixes = thread.stack_table.to_list('prefix')
        frames = thread.stack_table.to_list('frame')
        frame_funcs = thread.frame_table.to_list('func')
        is_js = thread.func_table.to_list('is_js')

        old_to_new: List[Optional[int]] = [None] * len(prefixes)
        key_to_stack: Dict[Tuple[Optional[int], int], int] = {}
        new_prefix: List[Optional[int]] = []
        new_frame: List[int] = []
        for stack_index, (prefix, frame) in enumerate(zip(prefixes, frames)):
            prefix_new = old_to_new[prefix] if prefix is not None and 0 <= prefix < stack_index else None
            func = _frame_func(thread, frame_funcs, frame)
            if func is None or not is_js[func]:
                old_to_new[stack_index] = prefix_new
                continue
            key = (prefix_new, frame)
            new_stack = key_to_stack.get(key)
            if new_stack is None:
                new_stack = len(new_frame)
                key_to_stack[key] = new_stack
                new_prefix.append(prefix_new)
                new_frame.append(frame)
            old_to_new[stack_index] = new_stack

        stack_table = ColumnarTable.from_columns(STACK_COLUMNS, {'prefix': new_prefix, 'frame': new_frame},
                                                 length=len(new_frame))
        return _with_sample_stacks(thread, stack_table, _map_sample_stacks(thread, old_to_new))


def filter_thread_to_search_string(thread: Thread, search_string: str) -> Thread:
    """只保留栈中 (任意一层) 函数名包含搜索串的采样，大小写不敏感"""
    if search_string == '':
        return thread
    with time_code('filter_thread_to_search_string'):
        lowercase_search = search_string.lower()
        prefixes = thread.stack_table.to_list('prefix')
        frames = thread.stack_table.to_list('frame')
        frame_funcs = thread.frame_table.to_list('func')
        func_names = thread.func_table.to_list('name')

        func_matches: Dict[int, bool] = {}
        stack_matches: List[bool] = [False] * len(prefixes)
        for stack_index, (prefix, frame) in enumerate(zip(prefixes, frames)):
            if prefix is not None and 0 <= prefix < stack_index and stack_matches[prefix]:
                stack_matches[stack_index] = True
                continue
            func = _frame_func(thread, frame_funcs, frame)
            if func is None:
                continue
            matches = func_matches.get(func)
            if matches is None:
                matches = lowercase_search in thread.string_table.get_string(func_names[func]).lower()
                func_matches[func] = matches
            stack_matches[stack_index] = matches

        identity = [stack if matches else None for stack, matches in enumerate(stack_matches)]
        return _with_sample_stacks(thread, thread.stack_table, _map_sample_stacks(thread, identity))


def _index_range_for_selection(times: np.ndarray, range_start: float, range_end: float) -> Tuple[int, int]:
    begin = int(np.searchsorted(times, range_start, side='left'))
    end = int(np.searchsorted(times, range_end, side='left'))
    return begin, max(begin, end)


def filter_thread_to_range(thread: Thread, range_start: float, range_end: float) -> Thread:
    """只保留时间落在 [range_start, range_end) 内的采样和标记 (时间已排序)"""
    sample_begin, sample_end = _index_range_for_selection(thread.samples.column('time'), range_start, range_end)
    marker_begin, marker_end = _index_range_for_selection(thread.markers.column('time'), range_start, range_end)
    return replace(
        thread,
        samples=thread.samples.take(np.arange(sample_begin, sample_end)),
        markers=thread.markers.take(np.arange(marker_begin, marker_end)),
    )


def invert_callstack(thread: Thread) -> Thread:
    """反转调用栈：叶子帧成为根"""
    with time_code('invert_callstack'):
        prefixes = thread.stack_table.to_list('prefix')
        frames = thread.stack_table.to_list('frame')

        key_to_stack: Dict[Tuple[Optional[int], Optional[int]], int] = {}
        new_prefix: List[Optional[int]] = []
        new_frame: List[Optional[int]] = []

        def _stack_for(prefix: Optional[int], frame: Optional[int]) -> int:
            key = (prefix, frame)
            stack_index = key_to_stack.get(key)
            if stack_index is None:
                stack_index = len(new_frame)
                key_to_stack[key] = stack_index
                new_prefix.append(prefix)
                new_frame.append(frame)
            return stack_index

        old_to_new: Dict[int, Optional[int]] = {}
        new_stacks: List[Optional[int]] = []
        for stack in thread.samples.to_list('stack'):
            if stack is None or not 0 <= stack < len(prefixes):
                new_stacks.append(None)
                continue
            if stack not in old_to_new:
                new_stack = None
                current = stack
                while current is not None:
                    new_stack = _stack_for(new_stack, frames[current])
                    parent = prefixes[current]
                    current = parent if parent is not None and 0 <= parent < current else None
                old_to_new[stack] = new_stack
            new_stacks.append(old_to_new[stack])

        stack_table = ColumnarTable.from_columns(STACK_COLUMNS, {'prefix': new_prefix, 'frame': new_frame},
                                                 length=len(new_frame))
        return _with_sample_stacks(thread, stack_table, new_stacks)


def get_func_stack_from_func_array(func_array: Sequence[int], func_stack_table: ColumnarTable) -> Optional[int]:
    """
    按根到叶的函数序列查找 func stack

    Returns:
        Optional[int]: 找不到时返回 None；空序列返回 -1 (虚拟根)
    """
    lookup = {(prefix, func): index for index, (prefix, func) in
              enumerate(zip(func_stack_table.to_list('prefix'), func_stack_table.to_list('func')))}
    func_stack = -1
    for func in func_array:
        func_stack = lookup.get((func_stack, func))
        if func_stack is None:
            return None
    return func_stack


def get_stack_as_func_array(func_stack_index: Optional[int], func_stack_table: ColumnarTable) -> List[int]:
    """返回根到该 func stack 的函数序列"""
    if func_stack_index is None:
        return []
    prefixes = func_stack_table.column('prefix')
    funcs = func_stack_table.column('func')
    func_array = []
    func_stack = func_stack_index
    while func_stack != -1:
        func_array.append(int(funcs[func_stack]))
        func_stack = int(prefixes[func_stack])
    func_array.reverse()
    return func_array


def get_time_range_for_thread(thread: Thread, interval: float) -> Tuple[float, float]:
    """返回 (第一个采样时间, 最后一个采样时间 + interval)；没有采样时为 (inf, -inf)"""
    if len(thread.samples) == 0:
        return math.inf, -math.inf
    times = thread.samples.column('time')
    return float(times[0]), float(times[-1]) + interval


def get_time_range_including_all_threads(profile: Profile) -> Tuple[float, float]:
    start, end = math.inf, -math.inf
    for thread in profile.threads:
        thread_start, thread_end = get_time_range_for_thread(thread, profile.interval)
        start = min(start, thread_start)
        end = max(end, thread_end)
    return start, end
