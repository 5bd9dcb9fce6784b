# -*- coding: utf-8 -*-
"""
列式存储表 (struct-of-arrays)

每个字段一个 numpy 数组，行按位置索引 (0..length-1)。
可空字段额外维护一个有效性掩码，掩码是"缺失"的唯一依据；
数值列在缺失位置同时写入填充值 (整数 -1 / 浮点 NaN)，方便向量化代码直接读取。
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np

from .exceptions import UnknownFieldError

logger = logging.getLogger(__name__)

_INITIAL_CAPACITY = 16

# 按 numpy dtype.kind 的填充值
_FILL_VALUES = {'i': -1, 'f': np.nan, 'b': False, 'O': None}


@dataclass(frozen=True)
class Column:
    """字段声明"""
    name: str
    dtype: str = 'int32'
    nullable: bool = False

    @property
    def np_dtype(self) -> np.dtype:
        return np.dtype(self.dtype)

    @property
    def fill_value(self) -> Any:
        kind = self.np_dtype.kind
        if kind not in _FILL_VALUES:
            raise ValueError(f"不支持的列类型: {self.dtype}")
        return _FILL_VALUES[kind]


class ColumnarTable:
    """
    可增长的列式表

    append 采用容量翻倍的方式摊销增长开销。
    column() 返回只读视图；需要修改时请使用 transform / with_columns / take，
    它们总是返回新表，源表保持不变。
    """

    def __init__(self, columns: Sequence[Column], capacity: int = _INITIAL_CAPACITY):
        self._columns: Dict[str, Column] = {}
        for column in columns:
            if column.name in self._columns:
                raise ValueError(f"重复的字段: {column.name}")
            self._columns[column.name] = column
        self._length = 0
        self._capacity = max(int(capacity), 1)
        self._data: Dict[str, np.ndarray] = {
            name: _empty_array(column, self._capacity) for name, column in self._columns.items()
        }
        self._valid: Dict[str, np.ndarray] = {
            name: np.zeros(self._capacity, dtype=bool)
            for name, column in self._columns.items() if column.nullable
        }

    # ------------------------------------------------------------------
    # 构造
    # ------------------------------------------------------------------

    @classmethod
    def from_columns(cls, columns: Sequence[Column], data: Mapping[str, Any],
                     length: Optional[int] = None) -> 'ColumnarTable':
        """
        从按列组织的数据构建表

        Args:
            columns: 字段声明
            data: 字段名 -> 值序列 (list 中的 None 表示缺失，也可以是 numpy 数组或掩码数组)
            length: 行数，不指定时取第一个给出的列的长度

        Returns:
            ColumnarTable: 新表
        """
        for name in data:
            if name not in {column.name for column in columns}:
                raise UnknownFieldError(name, [column.name for column in columns])
        if length is None:
            length = 0
            for column in columns:
                if column.name in data:
                    length = len(data[column.name])
                    break
        table = cls(columns, capacity=length)
        table._length = length
        for column in columns:
            if column.name in data:
                table._store(column, data[column.name])
        return table

    @classmethod
    def from_dict(cls, columns: Sequence[Column], table_dict: Mapping[str, Any]) -> 'ColumnarTable':
        """从 to_dict() 的输出 (含 length 键) 还原表，忽略未声明的键"""
        declared = {column.name for column in columns}
        data = {name: values for name, values in table_dict.items() if name in declared}
        return cls.from_columns(columns, data, length=int(table_dict.get('length', 0)))

    # ------------------------------------------------------------------
    # 基本属性
    # ------------------------------------------------------------------

    @property
    def length(self) -> int:
        return self._length

    def __len__(self) -> int:
        return self._length

    @property
    def columns(self) -> List[Column]:
        return list(self._columns.values())

    @property
    def field_names(self) -> List[str]:
        return list(self._columns)

    def __contains__(self, field: str) -> bool:
        return field in self._columns

    def __repr__(self) -> str:
        return f"ColumnarTable(length={self._length}, fields={self.field_names})"

    def __eq__(self, other) -> bool:
        if not isinstance(other, ColumnarTable):
            return NotImplemented
        return self.columns == other.columns and self.to_dict() == other.to_dict()

    __hash__ = None

    # ------------------------------------------------------------------
    # 行访问
    # ------------------------------------------------------------------

    def get(self, row: int, field: str) -> Any:
        column = self._check_field(field)
        self._check_row(row)
        if column.nullable and not self._valid[field][row]:
            return None
        value = self._data[field][row]
        return value if column.np_dtype.kind == 'O' else value.item()

    def set(self, row: int, field: str, value: Any) -> None:
        column = self._check_field(field)
        self._check_row(row)
        self._write(column, row, value)

    def append(self, partial_row: Optional[Mapping[str, Any]] = None) -> int:
        """
        追加一行，未给出的字段填充为缺失值

        Returns:
            int: 新行的索引
        """
        partial_row = partial_row or {}
        for field in partial_row:
            self._check_field(field)
        index = self._length
        self._ensure_capacity(index + 1)
        self._length += 1
        for field, value in partial_row.items():
            self._write(self._columns[field], index, value)
        return index

    def row(self, row: int) -> Dict[str, Any]:
        self._check_row(row)
        return {field: self.get(row, field) for field in self._columns}

    def resize(self, new_length: int) -> None:
        """增长或截断行数；新增行全部为缺失值"""
        if new_length < 0:
            raise ValueError(f"非法的长度: {new_length}")
        if new_length > self._length:
            self._ensure_capacity(new_length)
        else:
            for name, column in self._columns.items():
                self._data[name][new_length:self._length] = column.fill_value
                if column.nullable:
                    self._valid[name][new_length:self._length] = False
        self._length = new_length

    # ------------------------------------------------------------------
    # 列访问
    # ------------------------------------------------------------------

    def column(self, field: str) -> np.ndarray:
        """返回字段的只读视图，缺失位置为填充值"""
        self._check_field(field)
        view = self._data[field][:self._length]
        view.flags.writeable = False
        return view

    def valid_mask(self, field: str) -> np.ndarray:
        column = self._check_field(field)
        if not column.nullable:
            return np.ones(self._length, dtype=bool)
        return self._valid[field][:self._length].copy()

    def masked(self, field: str) -> np.ma.MaskedArray:
        """返回字段的掩码数组副本，缺失位置被掩盖"""
        self._check_field(field)
        return np.ma.MaskedArray(self._data[field][:self._length].copy(),
                                 mask=~self.valid_mask(field))

    def to_list(self, field: str) -> List[Any]:
        """返回 Python 列表，缺失值为 None"""
        column = self._check_field(field)
        values = self._data[field][:self._length].tolist()
        if column.nullable:
            valid = self._valid[field]
            return [value if valid[i] else None for i, value in enumerate(values)]
        return values

    # ------------------------------------------------------------------
    # 派生新表 (不修改源表)
    # ------------------------------------------------------------------

    def transform(self, functions: Mapping[str, Callable[[np.ma.MaskedArray], Any]]) -> 'ColumnarTable':
        """
        逐字段变换，生成新表

        未涉及的列按副本复用，涉及的列由函数重新计算。函数接收该列的掩码数组，
        返回与表等长的序列 (list 中 None 表示缺失，也可以返回 numpy 数组或掩码数组)。

        Args:
            functions: 字段名 -> 变换函数

        Returns:
            ColumnarTable: 新表
        """
        for field in functions:
            self._check_field(field)
        result = self.copy()
        for field, function in functions.items():
            values = function(self.masked(field))
            if len(values) != self._length:
                raise ValueError(f"字段 {field} 变换后长度 {len(values)} 与表长度 {self._length} 不一致")
            result._store(self._columns[field], values)
        return result

    def with_columns(self, columns: Sequence[Column], data: Mapping[str, Any]) -> 'ColumnarTable':
        """在副本上增加 (或替换) 字段"""
        merged = dict(self._columns)
        for column in columns:
            merged[column.name] = column
        result = ColumnarTable(list(merged.values()), capacity=max(self._length, 1))
        result._length = self._length
        for name, column in merged.items():
            if name in data:
                result._store(column, data[name])
            elif name in self._columns:
                result._data[name][:self._length] = self._data[name][:self._length]
                if column.nullable:
                    result._valid[name][:self._length] = self.valid_mask(name)
        return result

    def take(self, indices: Iterable[int]) -> 'ColumnarTable':
        """按行索引选取，生成新表"""
        indices = np.asarray(list(indices) if not isinstance(indices, np.ndarray) else indices,
                             dtype=np.int64)
        if indices.size and (indices.min() < 0 or indices.max() >= self._length):
            raise IndexError(f"行索引越界，表长度为 {self._length}")
        result = ColumnarTable(self.columns, capacity=max(len(indices), 1))
        result._length = len(indices)
        for name, column in self._columns.items():
            result._data[name][:len(indices)] = self._data[name][indices]
            if column.nullable:
                result._valid[name][:len(indices)] = self._valid[name][indices]
        return result

    def copy(self) -> 'ColumnarTable':
        return self.take(np.arange(self._length))

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {'length': self._length}
        for field in self._columns:
            result[field] = self.to_list(field)
        return result

    # ------------------------------------------------------------------
    # 内部工具
    # ------------------------------------------------------------------

    def _check_field(self, field: str) -> Column:
        column = self._columns.get(field)
        if column is None:
            raise UnknownFieldError(field, self._columns)
        return column

    def _check_row(self, row: int) -> None:
        if not 0 <= row < self._length:
            raise IndexError(f"行索引 {row} 越界，表长度为 {self._length}")

    def _ensure_capacity(self, needed: int) -> None:
        if needed <= self._capacity:
            return
        new_capacity = self._capacity
        while new_capacity < needed:
            new_capacity *= 2
        for name, column in self._columns.items():
            grown = _empty_array(column, new_capacity)
            grown[:self._length] = self._data[name][:self._length]
            self._data[name] = grown
            if column.nullable:
                valid = np.zeros(new_capacity, dtype=bool)
                valid[:self._length] = self._valid[name][:self._length]
                self._valid[name] = valid
        self._capacity = new_capacity

    def _write(self, column: Column, row: int, value: Any) -> None:
        if value is None:
            if column.nullable:
                self._valid[column.name][row] = False
            elif column.np_dtype.kind != 'O':
                raise ValueError(f"字段 {column.name} 不可为空")
            self._data[column.name][row] = column.fill_value
            return
        self._data[column.name][row] = value
        if column.nullable:
            self._valid[column.name][row] = True

    def _store(self, column: Column, values: Any) -> None:
        """把整列数据写入 [0, length)"""
        n = self._length
        if len(values) != n:
            raise ValueError(f"字段 {column.name} 长度 {len(values)} 与表长度 {n} 不一致")
        if isinstance(values, np.ma.MaskedArray):
            valid = ~np.ma.getmaskarray(values)
            data = np.ma.getdata(values)
            if column.np_dtype.kind != 'O':
                data = np.where(valid, data, column.fill_value)
            self._data[column.name][:n] = data
        elif isinstance(values, np.ndarray) and values.dtype.kind != 'O':
            valid = np.ones(n, dtype=bool)
            self._data[column.name][:n] = values
        else:
            values = list(values)
            valid = np.fromiter((value is not None for value in values), dtype=bool, count=n)
            filled = [column.fill_value if value is None else value for value in values]
            if column.np_dtype.kind == 'O':
                target = self._data[column.name]
                for i, value in enumerate(filled):
                    target[i] = value
            else:
                self._data[column.name][:n] = np.asarray(filled, dtype=column.np_dtype) if n else []
        if column.nullable:
            self._valid[column.name][:n] = valid
        elif column.np_dtype.kind != 'O' and not valid.all():
            logger.debug(f"字段 {column.name} 不可为空，缺失值已写入填充值 {column.fill_value}")


def _empty_array(column: Column, capacity: int) -> np.ndarray:
    return np.full(capacity, column.fill_value, dtype=column.np_dtype)
