"""
测试用的线程 / profile 构造工具
"""

from typing import List, Optional, Sequence, Tuple

from profile_tree_tool.columnar import ColumnarTable
from profile_tree_tool.models import (
    FRAME_COLUMNS, FUNC_COLUMNS, MARKER_COLUMNS, RESOURCE_COLUMNS, SAMPLE_COLUMNS, STACK_COLUMNS,
    Library, Profile, ResourceType, Thread,
)
from profile_tree_tool.string_table import StringTable


def make_thread(func_names: Sequence[str],
                frame_funcs: Sequence[Optional[int]],
                stacks: Sequence[Tuple[Optional[int], Optional[int]]],
                sample_stacks: Sequence[Optional[int]],
                sample_times: Optional[Sequence[float]] = None,
                is_js: Optional[Sequence[bool]] = None,
                name: str = 'GeckoMain') -> Thread:
    """按 函数名 / 帧 -> 函数 / (prefix, frame) 栈 / 采样栈 构造线程"""
    string_table = StringTable()
    func_table = ColumnarTable.from_columns(FUNC_COLUMNS, {
        'name': [string_table.index_for_string(func_name) for func_name in func_names],
        'is_js': list(is_js) if is_js is not None else [False] * len(func_names),
    }, length=len(func_names))
    frame_table = ColumnarTable.from_columns(FRAME_COLUMNS, {'func': list(frame_funcs)},
                                             length=len(frame_funcs))
    stack_table = ColumnarTable.from_columns(STACK_COLUMNS, {
        'prefix': [prefix for prefix, _ in stacks],
        'frame': [frame for _, frame in stacks],
    }, length=len(stacks))
    if sample_times is None:
        sample_times = [float(i) for i in range(len(sample_stacks))]
    samples = ColumnarTable.from_columns(SAMPLE_COLUMNS, {
        'stack': list(sample_stacks),
        'time': list(sample_times),
    }, length=len(sample_stacks))
    return Thread(
        name=name,
        string_table=string_table,
        func_table=func_table,
        resource_table=ColumnarTable(RESOURCE_COLUMNS),
        stack_table=stack_table,
        frame_table=frame_table,
        samples=samples,
        markers=ColumnarTable(MARKER_COLUMNS),
    )


def make_chain_thread(func_names: Sequence[str], sample_paths: Sequence[Sequence[int]],
                      is_js: Optional[Sequence[bool]] = None) -> Thread:
    """
    每个函数一个帧，按采样的函数路径 (根 -> 叶) 生成去重后的栈表

    Args:
        func_names: 函数名
        sample_paths: 每个采样的函数下标路径
    """
    stacks: List[Tuple[Optional[int], int]] = []
    stack_lookup = {}
    sample_stacks = []
    for path in sample_paths:
        prefix = None
        for func in path:
            key = (prefix, func)
            if key not in stack_lookup:
                stack_lookup[key] = len(stacks)
                stacks.append(key)
            prefix = stack_lookup[key]
        sample_stacks.append(prefix)
    return make_thread(func_names, list(range(len(func_names))), stacks, sample_stacks, is_js=is_js)


LIBXUL = Library(start=0x1000, end=0x9000, debug_name='xul.pdb', debug_id='ABC1', name='xul.dll')
LIBC = Library(start=0x10000, end=0x20000, debug_name='libc.so', debug_id='DEF2', name='libc.so')


def make_unsymbolicated_thread(addresses_by_lib: Sequence[Tuple[int, Sequence[int]]],
                               libs: Sequence[Library] = (LIBXUL, LIBC),
                               name: str = 'GeckoMain') -> Thread:
    """
    构造所有函数都是 "0x..." 原始地址的线程

    Args:
        addresses_by_lib: (库下标, 库内相对地址列表)；每个地址一个 func / 帧，
            同一个库内的地址按顺序组成一条调用链，每条链一个采样
    """
    string_table = StringTable()
    resource_names, resource_libs = [], []
    func_names, func_resources, func_addresses = [], [], []
    stacks: List[Tuple[Optional[int], int]] = []
    sample_stacks = []
    for lib_index, addresses in addresses_by_lib:
        lib = libs[lib_index]
        resource = len(resource_names)
        resource_names.append(string_table.index_for_string(lib.debug_name))
        resource_libs.append(lib_index)
        prefix = None
        for address in addresses:
            func = len(func_names)
            func_names.append(string_table.index_for_string(hex(lib.start + address)))
            func_resources.append(resource)
            func_addresses.append(address)
            stacks.append((prefix, func))
            prefix = len(stacks) - 1
        sample_stacks.append(prefix)

    func_count = len(func_names)
    func_table = ColumnarTable.from_columns(FUNC_COLUMNS, {
        'name': func_names,
        'resource': func_resources,
        'address': func_addresses,
        'is_js': [False] * func_count,
    }, length=func_count)
    resource_table = ColumnarTable.from_columns(RESOURCE_COLUMNS, {
        'type': [ResourceType.LIBRARY] * len(resource_names),
        'name': resource_names,
        'lib': resource_libs,
    }, length=len(resource_names))
    frame_table = ColumnarTable.from_columns(FRAME_COLUMNS, {
        'func': list(range(func_count)),
        'address': func_addresses,
    }, length=func_count)
    stack_table = ColumnarTable.from_columns(STACK_COLUMNS, {
        'prefix': [prefix for prefix, _ in stacks],
        'frame': [frame for _, frame in stacks],
    }, length=len(stacks))
    samples = ColumnarTable.from_columns(SAMPLE_COLUMNS, {
        'stack': sample_stacks,
        'time': [float(i) for i in range(len(sample_stacks))],
    }, length=len(sample_stacks))
    return Thread(
        name=name,
        string_table=string_table,
        func_table=func_table,
        resource_table=resource_table,
        stack_table=stack_table,
        frame_table=frame_table,
        samples=samples,
        markers=ColumnarTable(MARKER_COLUMNS),
        libs=list(libs),
    )


def make_profile(threads: Sequence[Thread], interval: float = 1.0) -> Profile:
    return Profile(meta={'interval': interval, 'preprocessed_profile_version': 1}, threads=list(threads))


def make_raw_profile() -> dict:
    """一个包含 C++ 地址帧、C++ 符号帧和 JS 帧的 raw profile"""
    return {
        'meta': {'interval': 1, 'startTime': 1000, 'version': 3},
        'libs': [
            {'start': 0x1000, 'end': 0x9000, 'name': 'xul.dll', 'pdbName': 'xul.pdb',
             'pdbSignature': '{ab-cd}', 'pdbAge': 2},
            {'start': 0x10000, 'end': 0x20000, 'name': '/usr/lib/libc.so', 'breakpadId': 'DEF2'},
        ],
        'threads': [
            {
                'name': 'GeckoMain',
                'processType': 'default',
                'tid': 7,
                'stringTable': [
                    '0x1100',
                    'js::RunScript (in xul.dll) + 12',
                    'onLoad (https://example.com/app.js:42)',
                    '0x10020',
                    'setTimeout',
                ],
                'frameTable': {
                    'schema': {'location': 0, 'implementation': 1, 'optimizations': 2, 'line': 3, 'category': 4},
                    'data': [[0], [1], [2, None, None, 42], [3], [4]],
                },
                'stackTable': {
                    'schema': {'prefix': 0, 'frame': 1},
                    'data': [[None, 0], [0, 1], [1, 2], [None, 3], [3, 4]],
                },
                'samples': {
                    'schema': {'stack': 0, 'time': 1, 'responsiveness': 2},
                    'data': [[2, 1.0, 0], [2, 2.0, 0], [1, 3.0, 5], [4, 4.0, 0], [None, 5.0, 0]],
                },
                'markers': {
                    'schema': {'name': 0, 'time': 1, 'data': 2},
                    'data': [[4, 3.5, None], [0, 1.5, {'startTime': 1.0, 'endTime': 2.0}]],
                },
            },
        ],
    }
