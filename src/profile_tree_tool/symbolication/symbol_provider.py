# -*- coding: utf-8 -*-
"""
外部符号提供者

SymbolProvider 是符号化流程依赖的外部接口：按 (debug_name, debug_id) 返回一个库的完整符号表。
这里提供两个基于本地文件的实现：
  - BreakpadSymbolProvider: <dir>/<debug_name>/<debug_id>/<stem>.sym 中的 FUNC / PUBLIC 记录
  - SymsJsonSymbolProvider: samply 风格的 .syms.json 边车文件
"""

import abc
import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from ..exceptions import SymbolProviderError
from .symbol_table import SymbolTable

logger = logging.getLogger(__name__)


class SymbolProvider(abc.ABC):
    """外部符号来源"""

    @abc.abstractmethod
    async def request_symbol_table(self, debug_name: str, debug_id: str) -> SymbolTable:
        """
        获取一个库的符号表

        Raises:
            SymbolProviderError: 无法获取该库的符号表
        """


def parse_breakpad_symbols(lines: Iterator[str]) -> Iterator[Tuple[int, str]]:
    """
    解析 breakpad .sym 文件中的 FUNC 和 PUBLIC 记录

    FUNC [m] <address> <size> <parameter_size> <name>
    PUBLIC [m] <address> <parameter_size> <name>
    """
    for line in lines:
        line = line.rstrip('\r\n')
        if line.startswith('FUNC '):
            rest, field_count = line[len('FUNC '):], 4
        elif line.startswith('PUBLIC '):
            rest, field_count = line[len('PUBLIC '):], 3
        else:
            continue
        if rest.startswith('m '):
            rest = rest[2:]
        fields = rest.split(' ', field_count - 1)
        if len(fields) < field_count:
            logger.debug(f"跳过格式不完整的符号记录: {line}")
            continue
        try:
            address = int(fields[0], 16)
        except ValueError:
            logger.debug(f"跳过地址无法解析的符号记录: {line}")
            continue
        yield address, fields[-1]


class BreakpadSymbolProvider(SymbolProvider):
    """从 breakpad 符号目录读取符号表"""

    def __init__(self, symbol_dirs: Sequence[Union[str, Path]]):
        self.symbol_dirs = [Path(symbol_dir) for symbol_dir in symbol_dirs]

    @staticmethod
    def _symbol_file_stem(debug_name: str) -> str:
        if debug_name.lower().endswith('.pdb'):
            return debug_name[:-4]
        return debug_name

    def find_symbol_file(self, debug_name: str, debug_id: str) -> Optional[Path]:
        stem = self._symbol_file_stem(debug_name)
        for symbol_dir in self.symbol_dirs:
            candidate = symbol_dir / debug_name / debug_id / f"{stem}.sym"
            if candidate.is_file():
                return candidate
        return None

    def _read_symbol_table(self, debug_name: str, debug_id: str) -> SymbolTable:
        symbol_file = self.find_symbol_file(debug_name, debug_id)
        if symbol_file is None:
            raise SymbolProviderError(f"找不到 {debug_name}/{debug_id} 的 .sym 文件")
        with open(symbol_file, 'r', encoding='utf-8', errors='replace') as f:
            table = SymbolTable.from_symbols(parse_breakpad_symbols(f))
        logger.info(f"读取符号文件 {symbol_file}: {table.symbol_count} 个符号")
        return table

    async def request_symbol_table(self, debug_name: str, debug_id: str) -> SymbolTable:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._read_symbol_table, debug_name, debug_id)
        except OSError as e:
            raise SymbolProviderError(f"读取 {debug_name}/{debug_id} 的符号文件失败: {e}") from e


class SymsJsonSymbolProvider(SymbolProvider):
    """
    从 samply 风格的 .syms.json 文件读取符号表

    文件结构: {"string_table": [...], "data": [{"debug_name", "debug_id", "symbol_table": [{"rva", "symbol"}]}]}
    symbol 可以是 string_table 的下标，也可以直接是字符串。
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._libraries: Optional[Dict[Tuple[str, str], Dict[str, Any]]] = None
        self._string_table: List[str] = []

    def _load(self) -> None:
        with open(self.path, 'r', encoding='utf-8') as f:
            document = json.load(f)
        self._string_table = document.get('string_table', [])
        libraries = {}
        for entry in document.get('data', []):
            debug_id = entry.get('debug_id') or entry.get('breakpad_id') or entry.get('code_id')
            libraries[(entry.get('debug_name'), debug_id)] = entry
        self._libraries = libraries
        logger.info(f"读取 {self.path}: {len(libraries)} 个库")

    def _symbol_name(self, symbol: Any) -> str:
        if isinstance(symbol, int):
            return self._string_table[symbol]
        return str(symbol)

    def _read_symbol_table(self, debug_name: str, debug_id: str) -> SymbolTable:
        if self._libraries is None:
            self._load()
        entry = self._libraries.get((debug_name, debug_id))
        if entry is None:
            raise SymbolProviderError(f"{self.path} 中没有 {debug_name}/{debug_id} 的符号")
        symbols = ((int(symbol['rva']), self._symbol_name(symbol['symbol']))
                   for symbol in entry.get('symbol_table', []))
        return SymbolTable.from_symbols(symbols)

    async def request_symbol_table(self, debug_name: str, debug_id: str) -> SymbolTable:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._read_symbol_table, debug_name, debug_id)
        except (OSError, ValueError, KeyError, IndexError) as e:
            raise SymbolProviderError(f"读取 {self.path} 失败: {e}") from e


class ChainedSymbolProvider(SymbolProvider):
    """依次尝试多个提供者，返回第一个成功的结果"""

    def __init__(self, providers: Sequence[SymbolProvider]):
        self.providers = list(providers)

    async def request_symbol_table(self, debug_name: str, debug_id: str) -> SymbolTable:
        errors = []
        for provider in self.providers:
            try:
                return await provider.request_symbol_table(debug_name, debug_id)
            except SymbolProviderError as e:
                errors.append(str(e))
        raise SymbolProviderError(f"没有可用的符号来源: {debug_name}/{debug_id} ({'; '.join(errors)})")
