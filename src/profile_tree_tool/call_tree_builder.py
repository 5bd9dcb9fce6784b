# -*- coding: utf-8 -*-
"""
调用栈去重算法

把 (prefix, frame) 形式的原始栈表折叠为 (prefix, func) 形式的 func stack 森林：
不同 frame 指向同一个 func 且前缀相同的栈合并为同一个 func stack。
栈表保证 prefix 索引小于自身索引，所以一次顺序扫描即可完成，时间复杂度 O(n)。
"""

import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional

import numpy as np

from .columnar import Column, ColumnarTable
from .models import FUNC_STACK_COLUMNS, Thread

logger = logging.getLogger(__name__)

_SAMPLE_FUNC_STACK_COLUMN = Column('func_stack', 'int32', nullable=True)


@dataclass
class FuncStackInfo:
    """func stack 表以及 stack 索引到 func stack 索引的映射 (-1 表示缺失)"""
    func_stack_table: ColumnarTable
    stack_index_to_func_stack_index: np.ndarray


def compute_func_stack_info(stack_table: ColumnarTable,
                            frame_table: ColumnarTable,
                            func_table: ColumnarTable) -> FuncStackInfo:
    """
    计算 func stack 表

    Args:
        stack_table: 栈表 (prefix, frame)
        frame_table: 帧表 (func, ...)
        func_table: 函数表

    Returns:
        FuncStackInfo: 去重后的 func stack 表和 stack -> func stack 映射
    """
    func_count = len(func_table)
    frame_funcs = frame_table.to_list('func')
    prefixes = stack_table.to_list('prefix')
    frames = stack_table.to_list('frame')

    stack_to_func_stack = np.full(len(stack_table), -1, dtype=np.int32)
    key_to_func_stack: Dict[int, int] = {}
    func_stack_prefix: List[int] = []
    func_stack_func: List[int] = []
    func_stack_depth: List[int] = []
    missing_count = 0

    for stack_index in range(len(stack_table)):
        prefix_stack = prefixes[stack_index]
        if prefix_stack is not None and not 0 <= prefix_stack < stack_index:
            logger.warning(f"栈 {stack_index} 的前缀 {prefix_stack} 不在它之前，按根栈处理")
            prefix_stack = None
        prefix_func_stack = -1 if prefix_stack is None else int(stack_to_func_stack[prefix_stack])

        frame_index = frames[stack_index]
        func_index = None
        if frame_index is not None and 0 <= frame_index < len(frame_funcs):
            func_index = frame_funcs[frame_index]
        if func_index is None or not 0 <= func_index < func_count:
            # 缺少信息的栈沿用前缀的 func stack
            logger.debug(f"栈 {stack_index} 引用的帧 {frame_index} 或函数 {func_index} 不存在")
            missing_count += 1
            stack_to_func_stack[stack_index] = prefix_func_stack
            continue

        # Python 整数不会溢出，前缀为 -1 时键落在 [-func_count, -1]
        key = prefix_func_stack * func_count + func_index
        func_stack_index = key_to_func_stack.get(key)
        if func_stack_index is None:
            func_stack_index = len(func_stack_func)
            key_to_func_stack[key] = func_stack_index
            func_stack_prefix.append(prefix_func_stack)
            func_stack_func.append(func_index)
            func_stack_depth.append(0 if prefix_func_stack == -1 else func_stack_depth[prefix_func_stack] + 1)
        stack_to_func_stack[stack_index] = func_stack_index

    if missing_count:
        logger.warning(f"{missing_count} 个栈引用了不存在的帧或函数，已沿用其前缀")

    func_stack_table = ColumnarTable.from_columns(FUNC_STACK_COLUMNS, {
        'prefix': np.asarray(func_stack_prefix, dtype=np.int32),
        'func': np.asarray(func_stack_func, dtype=np.int32),
        'depth': np.asarray(func_stack_depth, dtype=np.int32),
    }, length=len(func_stack_func))
    logger.debug(f"{len(stack_table)} 个栈折叠为 {len(func_stack_table)} 个 func stack")
    return FuncStackInfo(func_stack_table, stack_to_func_stack)


def get_sample_func_stacks(samples: ColumnarTable, stack_index_to_func_stack_index: np.ndarray) -> np.ma.MaskedArray:
    """
    把每个采样的 stack 映射到 func stack

    Returns:
        np.ma.MaskedArray: 与采样等长，缺失的 stack 或映射为 -1 的位置被掩盖
    """
    stacks = samples.column('stack').astype(np.int64)
    valid = samples.valid_mask('stack') & (stacks >= 0) & (stacks < len(stack_index_to_func_stack_index))
    result = np.full(len(samples), -1, dtype=np.int32)
    result[valid] = stack_index_to_func_stack_index[stacks[valid]]
    return np.ma.MaskedArray(result, mask=result < 0)


class CallTreeBuilder:
    """为线程构建 func stack 表并回填采样的 func_stack 列"""

    def __init__(self):
        self.logger = logger

    def compute(self, thread: Thread) -> FuncStackInfo:
        return compute_func_stack_info(thread.stack_table, thread.frame_table, thread.func_table)

    def build(self, thread: Thread, info: Optional[FuncStackInfo] = None) -> Thread:
        """
        返回带 func_stack_table 和 samples.func_stack 的新线程

        Args:
            thread: 输入线程，不会被修改
            info: 已计算好的 func stack 信息，不传时重新计算

        Returns:
            Thread: 新线程
        """
        if info is None:
            info = self.compute(thread)
        sample_func_stacks = get_sample_func_stacks(thread.samples, info.stack_index_to_func_stack_index)
        samples = thread.samples.with_columns([_SAMPLE_FUNC_STACK_COLUMN], {'func_stack': sample_func_stacks})
        self.logger.info(f"线程 {thread.name}: {len(thread.stack_table)} 个栈, "
                         f"{len(info.func_stack_table)} 个 func stack, {len(samples)} 个采样")
        return replace(thread, func_stack_table=info.func_stack_table, samples=samples)

    def get_tree_statistics(self, func_stack_table: ColumnarTable) -> Dict[str, Any]:
        """
        获取 func stack 森林的统计信息

        Args:
            func_stack_table: func stack 表

        Returns:
            Dict[str, Any]: 统计信息
        """
        prefixes = func_stack_table.column('prefix')
        depths = func_stack_table.column('depth')
        stats = {
            'total_nodes': len(func_stack_table),
            'total_roots': int(np.count_nonzero(prefixes == -1)),
            'max_depth': int(depths.max()) if len(depths) else 0,
            'avg_depth': float(depths.mean()) if len(depths) else 0.0,
        }
        if len(prefixes):
            has_child = np.zeros(len(prefixes), dtype=bool)
            has_child[prefixes[prefixes >= 0]] = True
            stats['leaf_nodes'] = int(np.count_nonzero(~has_child))
        else:
            stats['leaf_nodes'] = 0
        return stats
