# -*- coding: utf-8 -*-
"""
调用树视图

在 func stack 森林上聚合采样时间，按需 (并缓存) 生成子节点列表和节点展示信息。
节点索引即 func stack 索引，-1 表示虚拟根。
"""

import logging
from typing import Dict, Iterator, List, NamedTuple, Optional

import numpy as np

from .call_tree_builder import CallTreeBuilder, FuncStackInfo
from .models import CallNodeDisplay, Thread

logger = logging.getLogger(__name__)


class CallNodeTimes(NamedTuple):
    total_time: float
    self_time: float


class CallTree:
    """
    调用树

    两遍计算：
      1. 按采样累加每个 func stack 的 self time
      2. 逆序扫描 (子节点索引总大于父节点)，把 total time 累加到父节点，根节点累加到 root_total_time
    """

    def __init__(self, thread: Thread, interval: float = 1.0, js_only: bool = False,
                 func_stack_info: Optional[FuncStackInfo] = None):
        if thread.func_stack_table is None or func_stack_info is not None:
            thread = CallTreeBuilder().build(thread, func_stack_info)
        self._thread = thread
        self._func_stack_table = thread.func_stack_table
        self._interval = float(interval)
        self._js_only = js_only

        count = len(self._func_stack_table)
        self._prefixes: List[int] = self._func_stack_table.to_list('prefix')
        self._funcs: List[int] = self._func_stack_table.to_list('func')

        sample_func_stacks = thread.samples.masked('func_stack').compressed().astype(np.int64)
        sample_func_stacks = sample_func_stacks[sample_func_stacks < count]
        self._self_time = np.bincount(sample_func_stacks, minlength=count).astype(np.float64) * self._interval

        total_time = self._self_time.tolist()
        root_total_time = 0.0
        for index in range(count - 1, -1, -1):
            prefix = self._prefixes[index]
            if prefix == -1:
                root_total_time += total_time[index]
            else:
                total_time[prefix] += total_time[index]
        self._total_time = np.asarray(total_time, dtype=np.float64)
        self._root_total_time = root_total_time

        # 子节点列表一次性 O(n) 建好，排序延迟到首次访问
        self._unsorted_children: Dict[int, List[int]] = {}
        for index in range(count):
            if total_time[index] != 0:
                self._unsorted_children.setdefault(self._prefixes[index], []).append(index)
        self._children: Dict[int, List[int]] = {}
        self._nodes: Dict[int, CallNodeDisplay] = {}

    @property
    def thread(self) -> Thread:
        return self._thread

    @property
    def root_total_time(self) -> float:
        return self._root_total_time

    @property
    def node_count(self) -> int:
        return len(self._func_stack_table)

    def get_roots(self) -> List[int]:
        return self.get_children(-1)

    def get_children(self, node: int) -> List[int]:
        """按 total time 降序 (相同时按索引升序) 返回子节点，total time 为 0 的子节点被省略"""
        children = self._children.get(node)
        if children is None:
            total_time = self._total_time
            children = sorted(self._unsorted_children.get(node, []),
                              key=lambda child: (-total_time[child], child))
            self._children[node] = children
        return children

    def has_children(self, node: int) -> bool:
        return len(self.get_children(node)) != 0

    def get_parent(self, node: int) -> int:
        return self._prefixes[node]

    def get_depth(self, node: int) -> int:
        return self._func_stack_table.get(node, 'depth')

    def get_func(self, node: int) -> int:
        return self._funcs[node]

    def has_same_node_ids(self, other: 'CallTree') -> bool:
        """两棵树是否基于同一个 func stack 表 (节点索引可以互相引用)"""
        return self._func_stack_table is other._func_stack_table

    def get_node_times(self, node: int) -> CallNodeTimes:
        return CallNodeTimes(float(self._total_time[node]), float(self._self_time[node]))

    def get_node(self, node: int) -> CallNodeDisplay:
        """返回节点的展示信息 (带缓存)"""
        display = self._nodes.get(node)
        if display is None:
            func_index = self._funcs[node]
            func_table = self._thread.func_table
            total_time = self._total_time[node]
            if self._root_total_time:
                percent = 100 * total_time / self._root_total_time
            else:
                percent = 0.0
            display = CallNodeDisplay(
                total_time=f"{total_time:.1f}ms",
                self_time=f"{self._self_time[node]:.1f}ms",
                total_time_percent=f"{percent:.1f}%",
                name=self._thread.get_func_name(func_index),
                lib=self._get_origin_annotation(func_index),
                dim=self._js_only and not func_table.get(func_index, 'is_js'),
            )
            self._nodes[node] = display
        return display

    def get_call_path(self, node: int) -> List[str]:
        """从根到该节点的函数名路径"""
        path = []
        while node != -1:
            path.append(self._thread.get_func_name(self._funcs[node]))
            node = self._prefixes[node]
        return list(reversed(path))

    def iter_nodes(self, max_depth: Optional[int] = None) -> Iterator[int]:
        """按展示顺序深度优先遍历节点"""
        pending = list(reversed(self.get_roots()))
        while pending:
            node = pending.pop()
            yield node
            if max_depth is not None and self.get_depth(node) >= max_depth:
                continue
            pending.extend(reversed(self.get_children(node)))

    def print_tree(self, max_depth: int = 10):
        """
        打印调用树结构

        Args:
            max_depth: 最大打印深度
        """
        def _print_node(node: int, prefix: str, child_prefix: str):
            display = self.get_node(node)
            print(f"{prefix}{display.name} ({display.total_time}, {display.total_time_percent})")
            if self.get_depth(node) >= max_depth:
                return
            children = self.get_children(node)
            for i, child in enumerate(children):
                is_last = i == len(children) - 1
                _print_node(child,
                            child_prefix + ("└── " if is_last else "├── "),
                            child_prefix + ("    " if is_last else "│   "))

        for root in self.get_roots():
            _print_node(root, "", "")

    def _get_origin_annotation(self, func_index: int) -> str:
        func_table = self._thread.func_table
        string_table = self._thread.string_table
        file_name = func_table.get(func_index, 'file_name')
        if file_name is not None:
            line_number = func_table.get(func_index, 'line_number')
            if line_number is not None:
                return f"{string_table.get_string(file_name)}:{line_number}"
            return string_table.get_string(file_name)

        resource = func_table.get(func_index, 'resource')
        if resource is not None and 0 <= resource < len(self._thread.resource_table):
            return string_table.get_string(self._thread.resource_table.get(resource, 'name'))
        return ''
