import unittest

from profile_tree_tool.call_tree_builder import CallTreeBuilder, compute_func_stack_info

from profile_factory import make_chain_thread, make_thread


class TestComputeFuncStackInfo(unittest.TestCase):
    def test_duplicate_stacks_collapse(self):
        # 两个帧 F0 -> func0, F1 -> func1；栈 0/2 和 1/3 结构相同
        thread = make_thread(
            func_names=['func0', 'func1'],
            frame_funcs=[0, 1],
            stacks=[(None, 0), (0, 1), (None, 0), (2, 1)],
            sample_stacks=[0, 1, 2, 3],
        )
        info = compute_func_stack_info(thread.stack_table, thread.frame_table, thread.func_table)
        self.assertEqual(len(info.func_stack_table), 2)
        self.assertEqual(info.func_stack_table.row(0), {'prefix': -1, 'func': 0, 'depth': 0})
        self.assertEqual(info.func_stack_table.row(1), {'prefix': 0, 'func': 1, 'depth': 1})
        self.assertEqual(info.stack_index_to_func_stack_index.tolist(), [0, 1, 0, 1])

    def test_frames_of_same_func_collapse(self):
        # 同一个函数的两个不同帧 (例如不同行号) 合并为一个 func stack
        thread = make_thread(
            func_names=['main', 'work'],
            frame_funcs=[0, 1, 1],
            stacks=[(None, 0), (0, 1), (0, 2)],
            sample_stacks=[1, 2],
        )
        info = compute_func_stack_info(thread.stack_table, thread.frame_table, thread.func_table)
        self.assertEqual(len(info.func_stack_table), 2)
        self.assertEqual(info.stack_index_to_func_stack_index.tolist(), [0, 1, 1])

    def test_func_stack_count_bounded_by_stack_count(self):
        thread = make_chain_thread(['a', 'b', 'c', 'd'], [[0, 1, 2], [0, 1, 3], [0, 2], [3], [0, 1, 2]])
        info = compute_func_stack_info(thread.stack_table, thread.frame_table, thread.func_table)
        self.assertLessEqual(len(info.func_stack_table), len(thread.stack_table))
        pairs = set(zip(info.func_stack_table.to_list('prefix'), info.func_stack_table.to_list('func')))
        self.assertEqual(len(pairs), len(info.func_stack_table))

    def test_prefix_precedes_node(self):
        thread = make_chain_thread(['a', 'b', 'c'], [[0, 1, 2], [2, 1, 0]])
        info = compute_func_stack_info(thread.stack_table, thread.frame_table, thread.func_table)
        for index, prefix in enumerate(info.func_stack_table.to_list('prefix')):
            self.assertLess(prefix, index)

    def test_missing_frame_uses_prefix(self):
        thread = make_thread(
            func_names=['a', 'b'],
            frame_funcs=[0, None],
            stacks=[(None, 0), (0, 1), (1, None)],
            sample_stacks=[2],
        )
        info = compute_func_stack_info(thread.stack_table, thread.frame_table, thread.func_table)
        self.assertEqual(len(info.func_stack_table), 1)
        self.assertEqual(info.stack_index_to_func_stack_index.tolist(), [0, 0, 0])

    def test_missing_root_frame_is_absent(self):
        thread = make_thread(func_names=['a'], frame_funcs=[0], stacks=[(None, 5), (0, 0)], sample_stacks=[1])
        info = compute_func_stack_info(thread.stack_table, thread.frame_table, thread.func_table)
        self.assertEqual(info.stack_index_to_func_stack_index.tolist(), [-1, 0])
        self.assertEqual(info.func_stack_table.row(0), {'prefix': -1, 'func': 0, 'depth': 0})

    def test_empty_tables(self):
        thread = make_thread([], [], [], [])
        info = compute_func_stack_info(thread.stack_table, thread.frame_table, thread.func_table)
        self.assertEqual(len(info.func_stack_table), 0)
        self.assertEqual(len(info.stack_index_to_func_stack_index), 0)


class TestCallTreeBuilder(unittest.TestCase):
    def test_build_sets_sample_func_stacks(self):
        thread = make_thread(
            func_names=['func0', 'func1'],
            frame_funcs=[0, 1],
            stacks=[(None, 0), (0, 1), (None, 0), (2, 1)],
            sample_stacks=[3, None, 2, 1],
        )
        built = CallTreeBuilder().build(thread)
        self.assertIsNone(thread.func_stack_table)
        self.assertEqual(thread.samples.to_list('func_stack'), [None] * 4)
        self.assertEqual(built.samples.to_list('func_stack'), [1, None, 0, 1])
        self.assertEqual(len(built.func_stack_table), 2)

    def test_tree_statistics(self):
        thread = make_chain_thread(['a', 'b', 'c'], [[0, 1, 2], [0, 2], [1]])
        built = CallTreeBuilder().build(thread)
        stats = CallTreeBuilder().get_tree_statistics(built.func_stack_table)
        self.assertEqual(stats['total_nodes'], 5)
        self.assertEqual(stats['total_roots'], 2)
        self.assertEqual(stats['max_depth'], 2)
        self.assertEqual(stats['leaf_nodes'], 3)


if __name__ == '__main__':
    unittest.main()
