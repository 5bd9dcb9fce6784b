import json
import os
import tempfile
import unittest

from profile_tree_tool.exceptions import SymbolProviderError
from profile_tree_tool.symbolication.symbol_provider import (
    BreakpadSymbolProvider, ChainedSymbolProvider, SymsJsonSymbolProvider, parse_breakpad_symbols,
)

SYM_FILE = """MODULE windows x86_64 ABC1 xul.pdb
FILE 0 c:\\src\\main.cpp
FUNC 1000 20 0 main
1000 10 12 0
FUNC m 1100 30 0 js::RunScript(JSContext*)
PUBLIC 2000 0 _start
PUBLIC m 1100 0 duplicate_of_runscript
STACK WIN 4 1000 20 0 0 0 0 0 0 1
FUNC zz 10 0 broken
"""


class TestParseBreakpadSymbols(unittest.TestCase):
    def test_func_and_public_records(self):
        symbols = list(parse_breakpad_symbols(SYM_FILE.splitlines()))
        self.assertEqual(symbols, [
            (0x1000, 'main'),
            (0x1100, 'js::RunScript(JSContext*)'),
            (0x2000, '_start'),
            (0x1100, 'duplicate_of_runscript'),
        ])


class TestBreakpadSymbolProvider(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        symbol_dir = os.path.join(self.temp_dir.name, 'xul.pdb', 'ABC1')
        os.makedirs(symbol_dir)
        with open(os.path.join(symbol_dir, 'xul.sym'), 'w', encoding='utf-8') as f:
            f.write(SYM_FILE)

    def tearDown(self):
        self.temp_dir.cleanup()

    async def test_request_symbol_table(self):
        provider = BreakpadSymbolProvider([os.path.join(self.temp_dir.name, 'missing'), self.temp_dir.name])
        table = await provider.request_symbol_table('xul.pdb', 'ABC1')
        self.assertEqual(table.addrs.tolist(), [0x1000, 0x1100, 0x2000])
        self.assertEqual(table.names_at([1]), ['js::RunScript(JSContext*)'])

    async def test_missing_symbol_file(self):
        provider = BreakpadSymbolProvider([self.temp_dir.name])
        self.assertIsNone(provider.find_symbol_file('xul.pdb', 'OTHER'))
        with self.assertRaises(SymbolProviderError):
            await provider.request_symbol_table('xul.pdb', 'OTHER')


class TestSymsJsonSymbolProvider(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.temp_dir.name, 'libc.syms.json')
        document = {
            'string_table': ['malloc', 'free'],
            'data': [{
                'debug_name': 'libc.so',
                'debug_id': 'DEF2',
                'symbol_table': [
                    {'rva': 0x40, 'symbol': 1},
                    {'rva': 0x10, 'symbol': 0},
                    {'rva': 0x80, 'symbol': 'calloc'},
                ],
            }],
        }
        with open(self.path, 'w', encoding='utf-8') as f:
            json.dump(document, f)

    def tearDown(self):
        self.temp_dir.cleanup()

    async def test_request_symbol_table(self):
        table = await SymsJsonSymbolProvider(self.path).request_symbol_table('libc.so', 'DEF2')
        self.assertEqual(table.addrs.tolist(), [0x10, 0x40, 0x80])
        self.assertEqual(table.names_at([0, 1, 2]), ['malloc', 'free', 'calloc'])

    async def test_unknown_library(self):
        with self.assertRaises(SymbolProviderError):
            await SymsJsonSymbolProvider(self.path).request_symbol_table('libc.so', 'NOPE')

    async def test_missing_file(self):
        provider = SymsJsonSymbolProvider(os.path.join(self.temp_dir.name, 'missing.json'))
        with self.assertRaises(SymbolProviderError):
            await provider.request_symbol_table('libc.so', 'DEF2')

    async def test_chained_provider(self):
        missing = SymsJsonSymbolProvider(os.path.join(self.temp_dir.name, 'missing.json'))
        provider = ChainedSymbolProvider([missing, SymsJsonSymbolProvider(self.path)])
        table = await provider.request_symbol_table('libc.so', 'DEF2')
        self.assertEqual(table.symbol_count, 3)
        with self.assertRaises(SymbolProviderError):
            await provider.request_symbol_table('other', '1')


if __name__ == '__main__':
    unittest.main()
