# -*- coding: utf-8 -*-
"""
共享库地址区间查找

库列表按 start 升序排列且区间互不重叠，查找使用二分法，时间复杂度 O(log n)。
"""

import bisect
import collections.abc
import json
import logging
import math
import os
from typing import Any, Dict, List, Optional, Sequence, Union

from .models import Library

logger = logging.getLogger(__name__)


def get_containing_library(libs: Sequence[Library], address: Optional[float]) -> Optional[Library]:
    """
    查找包含该地址的库

    Args:
        libs: 按 start 排序、互不重叠的库列表
        address: 绝对地址，None 或 NaN 视为无效

    Returns:
        Optional[Library]: 满足 start <= address < end 的库，找不到时返回 None
    """
    if address is None:
        return None
    if isinstance(address, float) and math.isnan(address):
        return None

    position = bisect.bisect_right(_LibraryStarts(libs), address) - 1
    if position < 0:
        return None
    lib = libs[position]
    return lib if address < lib.end else None


class _LibraryStarts(collections.abc.Sequence):
    """库列表的 start 只读视图，供 bisect 使用"""

    def __init__(self, libs: Sequence[Library]):
        self._libs = libs

    def __len__(self) -> int:
        return len(self._libs)

    def __getitem__(self, index):
        return self._libs[index].start


class LibraryIndex:
    """排好序的库列表，支持按索引和按地址查找"""

    def __init__(self, libs: Sequence[Library]):
        self._libs: List[Library] = sorted(libs, key=lambda lib: lib.start)
        self._positions = {id(lib): i for i, lib in enumerate(self._libs)}
        for previous, current in zip(self._libs, self._libs[1:]):
            if current.start < previous.end:
                logger.warning(f"库地址区间重叠: {previous.debug_name} 与 {current.debug_name}")

    @property
    def libs(self) -> List[Library]:
        return list(self._libs)

    def __len__(self) -> int:
        return len(self._libs)

    def __getitem__(self, index: int) -> Library:
        return self._libs[index]

    def index_of(self, lib: Library) -> int:
        position = self._positions.get(id(lib))
        if position is None:
            return self._libs.index(lib)
        return position

    def get_containing_library(self, address: Optional[float]) -> Optional[Library]:
        return get_containing_library(self._libs, address)

    def get_containing_library_index(self, address: Optional[float]) -> Optional[int]:
        lib = self.get_containing_library(address)
        return None if lib is None else self.index_of(lib)


def _compute_debug_id(raw_lib: Dict[str, Any]) -> str:
    if raw_lib.get('debugId'):
        return raw_lib['debugId']
    if raw_lib.get('breakpadId'):
        return raw_lib['breakpadId']
    signature = str(raw_lib.get('pdbSignature', ''))
    for char in '{}-':
        signature = signature.replace(char, '')
    return f"{signature.upper()}{raw_lib.get('pdbAge', '')}"


def _compute_debug_name(raw_lib: Dict[str, Any]) -> str:
    if raw_lib.get('debugName'):
        return raw_lib['debugName']
    if raw_lib.get('pdbName'):
        return raw_lib['pdbName']
    # 兼容 Windows 和 POSIX 两种路径分隔符
    name = str(raw_lib.get('name', ''))
    return os.path.basename(name.replace('\\', '/'))


def preprocess_shared_libraries(raw_libs: Union[str, Sequence[Dict[str, Any]]]) -> List[Library]:
    """
    把 raw profile 中的库列表规范化为按 start 排序的 Library 列表

    Args:
        raw_libs: JSON 字符串或字典列表，字典包含 name/pdbName、start、end，
            以及 breakpadId 或 (pdbSignature, pdbAge)；也接受已规范化的 debugName/debugId

    Returns:
        List[Library]: 按 start 升序排列的库列表
    """
    if isinstance(raw_libs, str):
        raw_libs = json.loads(raw_libs) if raw_libs.strip() else []

    libs = []
    for raw_lib in raw_libs:
        try:
            start = int(raw_lib['start'])
            end = int(raw_lib['end'])
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"跳过缺少地址区间的库 {raw_lib.get('name', '')}: {e}")
            continue
        libs.append(Library(
            start=start,
            end=end,
            debug_name=_compute_debug_name(raw_lib),
            debug_id=_compute_debug_id(raw_lib),
            name=str(raw_lib.get('name', '')),
            path=str(raw_lib.get('path', raw_lib.get('name', ''))),
            arch=str(raw_lib.get('arch', '')),
        ))
    libs.sort(key=lambda lib: lib.start)
    logger.debug(f"规范化了 {len(libs)} 个共享库")
    return libs
