# -*- coding: utf-8 -*-
"""
采样 profile 数据模型定义
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .columnar import Column, ColumnarTable
from .string_table import StringTable


class ResourceType:
    """resource 表中 type 字段的取值"""
    UNKNOWN = 0
    LIBRARY = 1
    ADDON = 2
    WEBHOST = 3
    OTHERHOST = 4
    URL = 5


FUNC_COLUMNS = [
    Column('name', 'int32'),
    Column('resource', 'int32', nullable=True),
    Column('address', 'int64', nullable=True),
    Column('is_js', 'bool'),
    Column('file_name', 'int32', nullable=True),
    Column('line_number', 'int32', nullable=True),
]

RESOURCE_COLUMNS = [
    Column('type', 'int32'),
    Column('name', 'int32'),
    Column('lib', 'int32', nullable=True),
    Column('host', 'int32', nullable=True),
]

STACK_COLUMNS = [
    Column('prefix', 'int32', nullable=True),
    Column('frame', 'int32', nullable=True),
]

FRAME_COLUMNS = [
    Column('func', 'int32', nullable=True),
    Column('address', 'int64', nullable=True),
    Column('implementation', 'int32', nullable=True),
    Column('line', 'int32', nullable=True),
    Column('category', 'int32', nullable=True),
    Column('optimizations', 'object'),
]

# 根节点的 prefix 为 -1
FUNC_STACK_COLUMNS = [
    Column('prefix', 'int32'),
    Column('func', 'int32'),
    Column('depth', 'int32'),
]

SAMPLE_COLUMNS = [
    Column('stack', 'int32', nullable=True),
    Column('time', 'float64'),
    Column('responsiveness', 'float64', nullable=True),
    Column('rss', 'float64', nullable=True),
    Column('uss', 'float64', nullable=True),
    Column('frame_number', 'int32', nullable=True),
    Column('power', 'float64', nullable=True),
    Column('func_stack', 'int32', nullable=True),
]

MARKER_COLUMNS = [
    Column('name', 'int32'),
    Column('time', 'float64'),
    Column('data', 'object'),
]


@dataclass(frozen=True)
class Library:
    """共享库的加载地址区间 [start, end)"""
    start: int
    end: int
    debug_name: str
    debug_id: str
    name: str = ''
    path: str = ''
    arch: str = ''

    def contains(self, address: int) -> bool:
        return self.start <= address < self.end

    def to_dict(self) -> Dict[str, Any]:
        return {
            'start': self.start,
            'end': self.end,
            'debug_name': self.debug_name,
            'debug_id': self.debug_id,
            'name': self.name,
            'path': self.path,
            'arch': self.arch,
        }


@dataclass
class Thread:
    """
    一个线程的全部表

    约定上视为不可变：符号化或变换通过 dataclasses.replace 生成新的 Thread，
    string_table 只追加，可以在快照之间共享。
    """
    name: str
    string_table: StringTable
    func_table: ColumnarTable
    resource_table: ColumnarTable
    stack_table: ColumnarTable
    frame_table: ColumnarTable
    samples: ColumnarTable
    markers: ColumnarTable
    libs: List[Library] = field(default_factory=list)
    process_type: str = 'default'
    tid: Optional[int] = None
    pid: Optional[int] = None
    func_stack_table: Optional[ColumnarTable] = None

    @property
    def sample_count(self) -> int:
        return len(self.samples)

    def get_func_name(self, func_index: int) -> str:
        return self.string_table.get_string(self.func_table.get(func_index, 'name'))


@dataclass
class Profile:
    """profile = meta + 线程列表"""
    meta: Dict[str, Any]
    threads: List[Thread] = field(default_factory=list)

    @property
    def interval(self) -> float:
        """采样间隔 (毫秒)"""
        return float(self.meta.get('interval', 1.0))


@dataclass(frozen=True)
class CallNodeDisplay:
    """调用树节点的展示信息"""
    total_time: str
    self_time: str
    total_time_percent: str
    name: str
    lib: str
    dim: bool
