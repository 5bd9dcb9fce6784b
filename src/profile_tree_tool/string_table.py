# -*- coding: utf-8 -*-
"""
字符串驻留表

只追加：一个字符串一旦分配了索引，该索引在表的生命周期内不再变化。
"""

from typing import Dict, Iterable, List, Optional


class StringTable:
    """字符串 <-> 索引 的双向映射"""

    def __init__(self, original_array: Optional[Iterable[str]] = None):
        self._array: List[str] = []
        self._string_to_index: Dict[str, int] = {}
        if original_array is not None:
            for string in original_array:
                self._string_to_index.setdefault(string, len(self._array))
                self._array.append(string)

    def get_string(self, index: int) -> str:
        if not 0 <= index < len(self._array):
            raise IndexError(f"字符串索引 {index} 越界，表长度为 {len(self._array)}")
        return self._array[index]

    def has_string(self, string: str) -> bool:
        return string in self._string_to_index

    def index_for_string(self, string: str) -> int:
        """返回字符串的索引，不存在时追加"""
        index = self._string_to_index.get(string)
        if index is None:
            index = len(self._array)
            self._string_to_index[string] = index
            self._array.append(string)
        return index

    def serialize_to_array(self) -> List[str]:
        return list(self._array)

    def __len__(self) -> int:
        return len(self._array)

    def __eq__(self, other) -> bool:
        if not isinstance(other, StringTable):
            return NotImplemented
        return self._array == other._array

    __hash__ = None

    def __repr__(self) -> str:
        return f"StringTable(length={len(self._array)})"
