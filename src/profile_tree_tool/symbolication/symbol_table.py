# -*- coding: utf-8 -*-
"""
符号表编码

一个库的符号表由三部分组成：
  addrs:  升序排列的函数起始地址 (库内相对地址)
  index:  长度为 len(addrs) + 1 的字节偏移，第 i 个符号名为 buffer[index[i]:index[i + 1]]
  buffer: 所有符号名的 utf-8 编码拼接
"""

import logging
from typing import Iterable, List, NamedTuple, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)


class SymbolTable(NamedTuple):
    addrs: np.ndarray
    index: np.ndarray
    buffer: bytes

    @classmethod
    def from_symbols(cls, symbols: Iterable[Tuple[int, str]]) -> 'SymbolTable':
        """
        从 (地址, 符号名) 序列构建符号表

        地址重复时保留第一次出现的符号名。
        """
        by_address = {}
        for address, name in symbols:
            by_address.setdefault(int(address), name)
        addresses = sorted(by_address)
        encoded = [by_address[address].encode('utf-8') for address in addresses]
        index = np.zeros(len(encoded) + 1, dtype=np.int64)
        if encoded:
            index[1:] = np.cumsum([len(name) for name in encoded])
        return cls(np.asarray(addresses, dtype=np.int64), index, b''.join(encoded))

    @property
    def symbol_count(self) -> int:
        return len(self.addrs)

    def name_at(self, symbol_index: int) -> str:
        start, end = int(self.index[symbol_index]), int(self.index[symbol_index + 1])
        return self.buffer[start:end].decode('utf-8', errors='replace')

    def names_at(self, symbol_indices: Sequence[int]) -> List[str]:
        return [self.name_at(int(symbol_index)) for symbol_index in symbol_indices]

    def validate(self) -> None:
        """检查三部分的一致性，不一致时抛出 ValueError"""
        if len(self.index) != len(self.addrs) + 1:
            raise ValueError(f"index 长度 {len(self.index)} 应为 addrs 长度 + 1 ({len(self.addrs) + 1})")
        if len(self.addrs) > 1 and np.any(np.diff(self.addrs) < 0):
            raise ValueError("addrs 未按升序排列")
        if len(self.index) and int(self.index[-1]) != len(self.buffer):
            raise ValueError(f"index 末尾 {int(self.index[-1])} 与 buffer 长度 {len(self.buffer)} 不一致")
