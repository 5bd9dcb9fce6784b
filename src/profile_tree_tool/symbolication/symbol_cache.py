# -*- coding: utf-8 -*-
"""
符号表持久化缓存

以 (debug_name, debug_id) 为键把符号表存入 sqlite 数据库。
所有数据库操作都在一个专用的单线程执行器中运行，协程侧只看到 awaitable。
初始化 (建表 + 清理过期条目) 只执行一次，初始化完成前发起的操作会等待它完成后再执行。
"""

import asyncio
import functools
import logging
import sqlite3
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from ..exceptions import SymbolCacheClosedError, SymbolCacheError, SymbolCacheMissError
from .symbol_table import SymbolTable

logger = logging.getLogger(__name__)

DEFAULT_MAX_COUNT = 200
DEFAULT_MAX_AGE = 14 * 24 * 60 * 60  # 两周，单位秒

_ARRAY_DTYPE = '<i8'


class SymbolCache:
    """
    符号表缓存

    Args:
        db_path: sqlite 数据库路径，默认 ":memory:"
        max_count: 最多保留的库数量，超出时淘汰最久未使用的条目
        max_age: 条目最长保留时间 (秒)，初始化时清理
        clock: 返回当前时间 (秒) 的函数
    """

    def __init__(self, db_path: Union[str, Path] = ':memory:',
                 max_count: int = DEFAULT_MAX_COUNT,
                 max_age: float = DEFAULT_MAX_AGE,
                 clock: Callable[[], float] = time.time):
        if max_count < 1:
            raise ValueError(f"max_count 必须为正数: {max_count}")
        self._db_path = str(db_path)
        self._max_count = max_count
        self._max_age = max_age
        self._clock = clock
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='symbol-cache')
        self._conn: Optional[sqlite3.Connection] = None
        self._setup_task: Optional[asyncio.Future] = None
        self._tables: Dict[int, SymbolTable] = {}
        self._closed = False

    async def __aenter__(self) -> 'SymbolCache':
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # 公共接口
    # ------------------------------------------------------------------

    async def get_lib_key(self, debug_name: str, debug_id: str) -> int:
        """
        查找库对应的缓存键，并刷新其最近使用时间

        Raises:
            SymbolCacheMissError: 缓存中没有该库
        """
        await self._ensure_setup()
        key = await self._run(self._select_lib_key, debug_name, debug_id, self._clock())
        if key is None:
            logger.debug(f"符号缓存未命中: {debug_name}/{debug_id}")
            raise SymbolCacheMissError(f"{debug_name}/{debug_id}")
        return key

    async def import_library(self, debug_name: str, debug_id: str, symbol_table: SymbolTable) -> int:
        """写入一个库的符号表，返回缓存键"""
        symbol_table.validate()
        await self._ensure_setup()
        key, removed = await self._run(self._insert_library, debug_name, debug_id, symbol_table, self._clock())
        for removed_key in removed:
            self._tables.pop(removed_key, None)
        self._tables[key] = symbol_table
        logger.info(f"符号表已缓存: {debug_name}/{debug_id}, {symbol_table.symbol_count} 个符号")
        return key

    async def get_symbol_table(self, key: int) -> SymbolTable:
        """
        按缓存键取符号表

        Raises:
            SymbolCacheMissError: 键已失效 (条目被淘汰、过期或重新导入)
        """
        table = self._tables.get(key)
        if table is None:
            await self._ensure_setup()
            table = await self._run(self._load_table, key)
            if table is None:
                raise SymbolCacheMissError(f"缓存键 {key} 不存在")
            self._tables[key] = table
        return table

    async def get_func_address_table_for_lib(self, key: int) -> np.ndarray:
        """返回库的函数起始地址表 (升序)"""
        return (await self.get_symbol_table(key)).addrs

    async def get_symbols_for_addresses_in_lib(self, sorted_address_indices: Sequence[int], key: int) -> List[str]:
        """
        按地址表下标取符号名

        Args:
            sorted_address_indices: 地址表中的下标 (升序)
            key: 缓存键

        Returns:
            List[str]: 与请求顺序一致的符号名
        """
        return (await self.get_symbol_table(key)).names_at(sorted_address_indices)

    async def entry_count(self) -> int:
        await self._ensure_setup()
        return await self._run(self._count_entries)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._tables.clear()
        if self._conn is not None or self._setup_task is not None:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(self._executor, self._close_db)
        self._executor.shutdown(wait=False)
        logger.debug(f"符号缓存已关闭: {self._db_path}")

    # ------------------------------------------------------------------
    # 协程侧工具
    # ------------------------------------------------------------------

    async def _run(self, function, *args):
        if self._closed:
            raise SymbolCacheClosedError(f"符号缓存已关闭: {self._db_path}")
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self._executor, functools.partial(function, *args))
        except sqlite3.Error as e:
            raise SymbolCacheError(f"符号缓存数据库错误 ({self._db_path}): {e}") from e

    async def _ensure_setup(self) -> None:
        if self._closed:
            raise SymbolCacheClosedError(f"符号缓存已关闭: {self._db_path}")
        if self._setup_task is None:
            self._setup_task = asyncio.ensure_future(self._run(self._setup_db, self._clock()))
        await self._setup_task

    # ------------------------------------------------------------------
    # 以下方法只在执行器线程中运行
    # ------------------------------------------------------------------

    def _setup_db(self, now: float) -> None:
        self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
        cur = self._conn.cursor()
        # AUTOINCREMENT 保证被删除条目的 id 不会分配给新条目
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS symbol_cache_entries (
                id         INTEGER PRIMARY KEY AUTOINCREMENT,
                debug_name TEXT NOT NULL,
                debug_id   TEXT NOT NULL,
                addrs      BLOB NOT NULL,
                idx        BLOB NOT NULL,
                buffer     BLOB NOT NULL,
                last_used  REAL NOT NULL,
                UNIQUE(debug_name, debug_id)
            )
            """
        )
        cur.execute("DELETE FROM symbol_cache_entries WHERE last_used < ?", (now - self._max_age,))
        expired = cur.rowcount
        self._conn.commit()
        if expired > 0:
            logger.info(f"清理了 {expired} 个过期的符号表")

    def _select_lib_key(self, debug_name: str, debug_id: str, now: float) -> Optional[int]:
        cur = self._conn.cursor()
        cur.execute("SELECT id FROM symbol_cache_entries WHERE debug_name = ? AND debug_id = ?",
                    (debug_name, debug_id))
        row = cur.fetchone()
        if row is None:
            return None
        cur.execute("UPDATE symbol_cache_entries SET last_used = ? WHERE id = ?", (now, row[0]))
        self._conn.commit()
        return row[0]

    def _insert_library(self, debug_name: str, debug_id: str, symbol_table: SymbolTable,
                        now: float) -> Tuple[int, List[int]]:
        cur = self._conn.cursor()
        # 重新导入时旧条目的键同样失效
        cur.execute("SELECT id FROM symbol_cache_entries WHERE debug_name = ? AND debug_id = ?",
                    (debug_name, debug_id))
        removed: List[int] = [row[0] for row in cur.fetchall()]
        cur.execute("SELECT COUNT(*) FROM symbol_cache_entries WHERE NOT (debug_name = ? AND debug_id = ?)",
                    (debug_name, debug_id))
        others = cur.fetchone()[0]
        overflow = others - (self._max_count - 1)
        if overflow > 0:
            cur.execute("SELECT id FROM symbol_cache_entries WHERE NOT (debug_name = ? AND debug_id = ?) "
                        "ORDER BY last_used ASC, id ASC LIMIT ?", (debug_name, debug_id, overflow))
            evicted = [row[0] for row in cur.fetchall()]
            cur.executemany("DELETE FROM symbol_cache_entries WHERE id = ?", [(key,) for key in evicted])
            removed.extend(evicted)
            logger.debug(f"淘汰了 {len(evicted)} 个最久未使用的符号表")
        cur.execute(
            "INSERT OR REPLACE INTO symbol_cache_entries (debug_name, debug_id, addrs, idx, buffer, last_used) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                debug_name,
                debug_id,
                np.asarray(symbol_table.addrs, dtype=_ARRAY_DTYPE).tobytes(),
                np.asarray(symbol_table.index, dtype=_ARRAY_DTYPE).tobytes(),
                bytes(symbol_table.buffer),
                now,
            ),
        )
        key = cur.lastrowid
        self._conn.commit()
        return key, removed

    def _load_table(self, key: int) -> Optional[SymbolTable]:
        cur = self._conn.cursor()
        cur.execute("SELECT addrs, idx, buffer FROM symbol_cache_entries WHERE id = ?", (key,))
        row = cur.fetchone()
        if row is None:
            return None
        addrs, index, buffer = row
        return SymbolTable(
            np.frombuffer(addrs, dtype=_ARRAY_DTYPE).astype(np.int64),
            np.frombuffer(index, dtype=_ARRAY_DTYPE).astype(np.int64),
            bytes(buffer),
        )

    def _count_entries(self) -> int:
        cur = self._conn.cursor()
        cur.execute("SELECT COUNT(*) FROM symbol_cache_entries")
        return cur.fetchone()[0]

    def _close_db(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
