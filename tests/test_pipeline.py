import os
import sqlite3
import tempfile
import unittest

from profile_tree_tool.call_tree import CallTree
from profile_tree_tool.symbolication.batching import FunctionsUpdateBatcher
from profile_tree_tool.symbolication.coordinator import LibraryState, SymbolResolutionCoordinator
from profile_tree_tool.symbolication.pipeline import (
    ProfileSymbolicationPipeline, symbolicate_profile, symbolicate_thread,
)
from profile_tree_tool.symbolication.symbol_cache import SymbolCache

from profile_factory import LIBC, LIBXUL, make_chain_thread, make_profile, make_unsymbolicated_thread
from test_coordinator import LIBC_SYMBOLS, XUL_SYMBOLS, FakeSymbolProvider


class UnreadableEntryCache(SymbolCache):
    """读取指定缓存键时数据库报错"""

    def __init__(self, *args, unreadable_keys=(), **kwargs):
        super().__init__(*args, **kwargs)
        self.unreadable_keys = set(unreadable_keys)

    def _load_table(self, key):
        if key in self.unreadable_keys:
            raise sqlite3.OperationalError("database disk image is malformed")
        return super()._load_table(key)


def make_thread(name='GeckoMain'):
    # xul: 0x110 -> 0x120 -> 0x210 一条链；libc: 0x20
    return make_unsymbolicated_thread([(0, [0x110, 0x120, 0x210]), (1, [0x20])], name=name)


class TestSymbolicationPipeline(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.cache = SymbolCache()
        self.provider = FakeSymbolProvider({('xul.pdb', 'ABC1'): XUL_SYMBOLS})
        self.coordinator = SymbolResolutionCoordinator(self.cache, self.provider)

    async def asyncTearDown(self):
        await self.cache.close()

    async def test_symbolicate_thread(self):
        thread = make_thread()
        updates = []
        result = await symbolicate_thread(thread, self.coordinator,
                                          lambda t, renamed, merged: updates.append((renamed, merged)))

        # 0x110 和 0x120 都落在 main 内，合并为一个函数
        self.assertEqual(len(result.func_table), 3)
        self.assertEqual([result.get_func_name(i) for i in range(3)], ['main', 'run', '0x10020'])
        self.assertEqual(updates, [(2, 1)])
        self.assertEqual(self.coordinator.get_library_state(LIBC), LibraryState.FAILED)
        self.assertEqual(self.coordinator.get_library_state(LIBXUL), LibraryState.RESOLVED)

        # 输入线程保持不变
        self.assertEqual(len(thread.func_table), 4)
        self.assertEqual(thread.get_func_name(0), '0x1110')

    async def test_call_tree_after_symbolication(self):
        result = await symbolicate_thread(make_thread(), self.coordinator)
        tree = CallTree(result)
        self.assertEqual(tree.get_call_path(tree.get_children(tree.get_children(tree.get_roots()[0])[0])[0]),
                         ['main', 'main', 'run'])
        self.assertEqual(tree.root_total_time, 2.0)

    async def test_thread_without_addresses_is_unchanged(self):
        thread = make_chain_thread(['main', 'run'], [[0, 1]])
        self.assertIs(await symbolicate_thread(thread, self.coordinator), thread)
        self.assertEqual(self.provider.calls, [])

    async def test_failed_library_is_not_requested_again(self):
        symbolicated = await symbolicate_thread(make_thread(), self.coordinator)
        again = await symbolicate_thread(symbolicated, self.coordinator)
        self.assertIs(again, symbolicated)
        self.assertEqual(self.provider.calls.count(('libc.so', 'DEF2')), 1)

    async def test_symbolicate_profile_publishes_snapshots(self):
        profile = make_profile([make_thread('GeckoMain'), make_thread('Compositor')])
        snapshots = []
        thread_updates = []
        result = await symbolicate_profile(
            profile, self.coordinator, on_update=snapshots.append,
            on_thread_update=lambda index, thread, renamed, merged: thread_updates.append(index))

        self.assertEqual(len(snapshots), 2)
        self.assertEqual(sorted(thread_updates), [0, 1])
        self.assertEqual(self.provider.calls.count(('xul.pdb', 'ABC1')), 1)
        self.assertEqual(self.provider.calls.count(('libc.so', 'DEF2')), 1)
        for thread in result.threads:
            self.assertEqual(thread.get_func_name(0), 'main')
        # 第一个快照只包含一个线程的更新
        first = snapshots[0]
        self.assertEqual(sorted(len(thread.func_table) for thread in first.threads), [3, 4])
        self.assertEqual(profile.threads[0].get_func_name(0), '0x1110')

    async def test_pipeline_snapshots_stream(self):
        profile = make_profile([make_thread()])
        batcher = FunctionsUpdateBatcher()
        pipeline = ProfileSymbolicationPipeline(profile, self.coordinator, batcher=batcher)
        snapshots = [snapshot async for snapshot in pipeline.snapshots()]

        self.assertEqual(len(snapshots), 1)
        self.assertIsNotNone(pipeline.result)
        self.assertEqual(pipeline.result.threads[0].get_func_name(1), 'run')
        batch = batcher.flush()
        self.assertEqual(len(batch), 1)
        self.assertEqual((batch[0].thread_index, batch[0].renamed_count, batch[0].merged_count), (0, 2, 1))

    async def test_pipeline_run(self):
        pipeline = ProfileSymbolicationPipeline(make_profile([make_thread()]), self.coordinator)
        result = await pipeline.run()
        self.assertIs(result, pipeline.result)
        self.assertEqual(result.threads[0].get_func_name(0), 'main')

    async def test_evicting_cache_keeps_library_symbols_apart(self):
        provider = FakeSymbolProvider({('xul.pdb', 'ABC1'): XUL_SYMBOLS, ('libc.so', 'DEF2'): LIBC_SYMBOLS})
        async with SymbolCache(max_count=1) as cache:
            coordinator = SymbolResolutionCoordinator(cache, provider)
            thread = make_unsymbolicated_thread([(0, [0x110, 0x210]), (1, [0x20])])
            result = await symbolicate_thread(thread, coordinator)

        self.assertEqual([result.get_func_name(i) for i in range(len(result.func_table))],
                         ['main', 'run', 'malloc'])

    async def test_cache_read_failure_only_affects_its_library(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, 'symbols.db')
            async with SymbolCache(db_path) as cache:
                await cache.import_library('xul.pdb', 'ABC1', XUL_SYMBOLS)
                libc_key = await cache.import_library('libc.so', 'DEF2', LIBC_SYMBOLS)

            provider = FakeSymbolProvider({})
            async with UnreadableEntryCache(db_path, unreadable_keys={libc_key}) as cache:
                coordinator = SymbolResolutionCoordinator(cache, provider)
                result = await symbolicate_profile(make_profile([make_thread()]), coordinator)

        thread = result.threads[0]
        self.assertEqual([thread.get_func_name(i) for i in range(3)], ['main', 'run', '0x10020'])
        self.assertEqual(coordinator.get_library_state(LIBC), LibraryState.FAILED)
        self.assertEqual(coordinator.get_library_state(LIBXUL), LibraryState.RESOLVED)
        self.assertEqual(provider.calls, [])


if __name__ == '__main__':
    unittest.main()
