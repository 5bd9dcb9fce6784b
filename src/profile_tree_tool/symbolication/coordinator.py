# -*- coding: utf-8 -*-
"""
符号解析协调器

每个库的状态机: UNRESOLVED -> REQUESTING -> RESOLVED | FAILED。
同一个库的解析请求被合并为一个任务，协调器生命周期内最多向外部提供者请求一次；
失败是粘滞的，之后的请求直接抛出 SymbolicationFailedError。

本模块还包含符号化用到的纯函数：收集待符号化的函数、按函数起始地址合并函数、
压缩函数表以及回填函数名。
"""

import asyncio
import enum
import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from ..call_tree_builder import CallTreeBuilder
from ..exceptions import SymbolCacheMissError, SymbolicationFailedError
from ..models import Library, ResourceType, Thread
from .symbol_cache import SymbolCache
from .symbol_provider import SymbolProvider
from .symbol_table import SymbolTable

logger = logging.getLogger(__name__)


class LibraryState(enum.Enum):
    UNRESOLVED = 'unresolved'
    REQUESTING = 'requesting'
    RESOLVED = 'resolved'
    FAILED = 'failed'


@dataclass
class FunctionMergeResult:
    """
    addr_to_func_index: 符号表下标 -> 代表该函数的 func
    old_func_to_new_func: 被合并掉的 func -> 代表 func
    """
    addr_to_func_index: Dict[int, int] = field(default_factory=dict)
    old_func_to_new_func: Dict[int, int] = field(default_factory=dict)


def gather_addresses_in_thread(thread: Thread) -> Dict[Library, List[int]]:
    """
    找出线程中需要符号化的函数

    需要符号化的函数属于 library 类型的资源，且名字仍是 "0x..." 形式的原始地址。

    Returns:
        Dict[Library, List[int]]: 库 -> 该库中待符号化的 func 下标
    """
    func_table = thread.func_table
    resource_table = thread.resource_table
    resources = func_table.to_list('resource')
    addresses = func_table.to_list('address')
    names = func_table.to_list('name')
    resource_types = resource_table.to_list('type')
    resource_libs = resource_table.to_list('lib')

    found: Dict[Library, List[int]] = {}
    for func_index, resource in enumerate(resources):
        if resource is None or not 0 <= resource < len(resource_types):
            continue
        if resource_types[resource] != ResourceType.LIBRARY or addresses[func_index] is None:
            continue
        lib_index = resource_libs[resource]
        if lib_index is None or not 0 <= lib_index < len(thread.libs):
            continue
        if not thread.string_table.get_string(names[func_index]).startswith('0x'):
            # 已经符号化过
            continue
        found.setdefault(thread.libs[lib_index], []).append(func_index)
    return found


def merge_functions(symbol_address_table: np.ndarray,
                    address_batch: Sequence[Tuple[int, int]]) -> FunctionMergeResult:
    """
    按函数起始地址合并 func

    符号化之前每个不同的地址各有一个 func；拿到库的函数起始地址表后，
    落在同一个函数内的 func 合并为一个 (地址最小者作为代表)。
    低于第一个函数起始地址的 func 保持未解析。

    Args:
        symbol_address_table: 升序的函数起始地址
        address_batch: (func 下标, 库内地址) 列表

    Returns:
        FunctionMergeResult: 合并结果
    """
    result = FunctionMergeResult()
    if not address_batch:
        return result
    funcs = np.asarray([func for func, _ in address_batch], dtype=np.int64)
    addresses = np.asarray([address for _, address in address_batch], dtype=np.int64)
    order = np.lexsort((funcs, addresses))
    funcs, addresses = funcs[order], addresses[order]
    symbol_indices = np.searchsorted(np.asarray(symbol_address_table), addresses, side='right') - 1

    last_symbol = -1
    last_func = -1
    for func, symbol_index in zip(funcs.tolist(), symbol_indices.tolist()):
        if symbol_index < 0:
            continue
        if symbol_index == last_symbol:
            result.old_func_to_new_func[func] = last_func
            continue
        last_symbol = symbol_index
        last_func = func
        result.addr_to_func_index[symbol_index] = func
    return result


def apply_function_merging(thread: Thread, old_func_to_new_func: Mapping[int, int]) -> Tuple[Thread, np.ndarray]:
    """
    合并 func 并压缩函数表

    被合并掉的 func 从函数表中删除，剩余 func 重新编号，帧表的 func 列随之更新，
    func stack 表重新计算。

    Args:
        thread: 输入线程，不会被修改
        old_func_to_new_func: 被合并掉的 func -> 代表 func

    Returns:
        Tuple[Thread, np.ndarray]: 新线程，以及 旧 func 下标 -> 新 func 下标 的映射数组
    """
    func_count = len(thread.func_table)
    if not old_func_to_new_func:
        return thread, np.arange(func_count, dtype=np.int64)

    keep = np.ones(func_count, dtype=bool)
    keep[list(old_func_to_new_func)] = False
    new_index = np.cumsum(keep) - 1
    remap = np.where(keep, new_index, -1)
    for old_func in old_func_to_new_func:
        target = old_func_to_new_func[old_func]
        while target in old_func_to_new_func:
            target = old_func_to_new_func[target]
        remap[old_func] = new_index[target]

    func_table = thread.func_table.take(np.flatnonzero(keep))

    def _remap_frame_funcs(frame_funcs: np.ma.MaskedArray) -> np.ma.MaskedArray:
        values = np.ma.getdata(frame_funcs).astype(np.int64)
        in_range = (values >= 0) & (values < func_count)
        mapped = np.where(in_range, remap[np.clip(values, 0, max(func_count - 1, 0))], values)
        return np.ma.MaskedArray(mapped, mask=np.ma.getmaskarray(frame_funcs))

    frame_table = thread.frame_table.transform({'func': _remap_frame_funcs})
    merged = replace(thread, func_table=func_table, frame_table=frame_table, func_stack_table=None)
    logger.debug(f"线程 {thread.name}: 合并了 {len(old_func_to_new_func)} 个函数")
    return CallTreeBuilder().build(merged), remap


def set_func_names(thread: Thread, addr_to_func_index_map: Mapping[int, int], names: Sequence[str]) -> Thread:
    """
    回填函数名

    Args:
        thread: 输入线程
        addr_to_func_index_map: 符号表下标 -> func
        names: 与 sorted(addr_to_func_index_map) 一一对应的符号名

    Returns:
        Thread: func 表 name 列更新后的新线程 (字符串表只追加，共享)
    """
    symbol_indices = sorted(addr_to_func_index_map)
    if len(symbol_indices) != len(names):
        raise ValueError(f"符号名数量 {len(names)} 与请求数量 {len(symbol_indices)} 不一致")
    updates = {addr_to_func_index_map[symbol_index]: thread.string_table.index_for_string(name)
               for symbol_index, name in zip(symbol_indices, names)}

    def _rename(name_column: np.ma.MaskedArray) -> np.ndarray:
        values = np.ma.getdata(name_column).copy()
        for func_index, name_index in updates.items():
            values[func_index] = name_index
        return values

    return replace(thread, func_table=thread.func_table.transform({'name': _rename}))


class SymbolResolutionCoordinator:
    """
    协调符号缓存和外部提供者

    一个协调器对应一个已加载的 profile；缓存在协调器生命周期内共享。
    解析成功的符号表由协调器持有，缓存淘汰该条目后同一协调器读到的仍是同一份表。
    """

    def __init__(self, cache: SymbolCache, provider: SymbolProvider):
        self._cache = cache
        self._provider = provider
        self._states: Dict[Tuple[str, str], LibraryState] = {}
        self._in_flight: Dict[Tuple[str, str], asyncio.Future] = {}
        self._failed: Dict[Tuple[str, str], str] = {}

    @property
    def cache(self) -> SymbolCache:
        return self._cache

    def get_library_state(self, lib: Library) -> LibraryState:
        return self._states.get((lib.debug_name, lib.debug_id), LibraryState.UNRESOLVED)

    async def ensure_library_resolved(self, lib: Library) -> SymbolTable:
        """
        确保库的符号表已解析，返回该库的符号表

        Raises:
            SymbolicationFailedError: 该库已经失败过，或本次解析失败
        """
        key = (lib.debug_name, lib.debug_id)
        if key in self._failed:
            raise SymbolicationFailedError(lib.debug_name, lib.debug_id, self._failed[key])
        task = self._in_flight.get(key)
        if task is None:
            self._states[key] = LibraryState.REQUESTING
            task = asyncio.ensure_future(self._resolve(lib))
            self._in_flight[key] = task
        return await asyncio.shield(task)

    async def get_func_address_table(self, lib: Library) -> np.ndarray:
        return (await self.ensure_library_resolved(lib)).addrs

    async def get_symbols(self, lib: Library, sorted_address_indices: Sequence[int]) -> List[str]:
        return (await self.ensure_library_resolved(lib)).names_at(sorted_address_indices)

    async def _load_from_cache(self, lib: Library) -> Optional[SymbolTable]:
        try:
            cache_key = await self._cache.get_lib_key(lib.debug_name, lib.debug_id)
            return await self._cache.get_symbol_table(cache_key)
        except SymbolCacheMissError:
            return None

    async def _resolve(self, lib: Library) -> SymbolTable:
        key = (lib.debug_name, lib.debug_id)
        try:
            symbol_table = await self._load_from_cache(lib)
            if symbol_table is None:
                logger.info(f"请求符号表: {lib.debug_name}/{lib.debug_id}")
                symbol_table = await self._provider.request_symbol_table(lib.debug_name, lib.debug_id)
                await self._cache.import_library(lib.debug_name, lib.debug_id, symbol_table)
        except Exception as e:
            self._failed[key] = str(e)
            self._states[key] = LibraryState.FAILED
            logger.warning(f"库 {lib.debug_name}/{lib.debug_id} 符号化失败: {e}")
            raise SymbolicationFailedError(lib.debug_name, lib.debug_id, str(e)) from e
        self._states[key] = LibraryState.RESOLVED
        return symbol_table
