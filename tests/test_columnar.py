import unittest

import numpy as np

from profile_tree_tool.columnar import Column, ColumnarTable
from profile_tree_tool.exceptions import ProfileTreeError, UnknownFieldError

COLUMNS = [
    Column('prefix', 'int32', nullable=True),
    Column('func', 'int32'),
    Column('time', 'float64'),
    Column('data', 'object'),
]


class TestColumnarTable(unittest.TestCase):
    def setUp(self):
        self.table = ColumnarTable.from_columns(COLUMNS, {
            'prefix': [None, 0, 1],
            'func': [3, 4, 5],
            'time': [0.5, 1.5, 2.5],
            'data': [None, {'a': 1}, 'x'],
        })

    def test_from_columns_and_get(self):
        self.assertEqual(len(self.table), 3)
        self.assertIsNone(self.table.get(0, 'prefix'))
        self.assertEqual(self.table.get(1, 'prefix'), 0)
        self.assertEqual(self.table.get(2, 'func'), 5)
        self.assertEqual(self.table.get(1, 'data'), {'a': 1})
        self.assertIsInstance(self.table.get(2, 'func'), int)

    def test_absent_values_are_masked_and_filled(self):
        self.assertEqual(self.table.to_list('prefix'), [None, 0, 1])
        self.assertEqual(self.table.column('prefix')[0], -1)
        self.assertEqual(self.table.valid_mask('prefix').tolist(), [False, True, True])
        masked = self.table.masked('prefix')
        self.assertTrue(masked.mask[0])
        self.assertEqual(masked.compressed().tolist(), [0, 1])

    def test_zero_is_not_absent(self):
        table = ColumnarTable.from_columns(COLUMNS, {'prefix': [0, None], 'func': [0, 0]})
        self.assertEqual(table.to_list('prefix'), [0, None])

    def test_unknown_field_raises(self):
        with self.assertRaises(UnknownFieldError):
            self.table.get(0, 'nope')
        with self.assertRaises(KeyError):
            self.table.column('nope')
        with self.assertRaises(ProfileTreeError):
            ColumnarTable.from_columns(COLUMNS, {'nope': [1]})

    def test_row_index_out_of_range(self):
        with self.assertRaises(IndexError):
            self.table.get(3, 'func')
        with self.assertRaises(IndexError):
            self.table.set(-1, 'func', 1)

    def test_append_grows_geometrically(self):
        table = ColumnarTable(COLUMNS, capacity=2)
        for i in range(100):
            self.assertEqual(table.append({'func': i, 'time': float(i)}), i)
        self.assertEqual(len(table), 100)
        self.assertEqual(table.get(99, 'func'), 99)
        self.assertIsNone(table.get(50, 'prefix'))
        self.assertEqual(table._capacity, 128)

    def test_append_unknown_field_does_not_add_row(self):
        table = ColumnarTable(COLUMNS)
        with self.assertRaises(UnknownFieldError):
            table.append({'func': 1, 'bogus': 2})
        self.assertEqual(len(table), 0)

    def test_set_none_clears_value(self):
        self.table.set(1, 'prefix', None)
        self.assertIsNone(self.table.get(1, 'prefix'))
        with self.assertRaises(ValueError):
            self.table.set(1, 'func', None)

    def test_resize(self):
        self.table.resize(5)
        self.assertEqual(len(self.table), 5)
        self.assertIsNone(self.table.get(4, 'prefix'))
        self.table.resize(1)
        self.assertEqual(self.table.to_list('func'), [3])
        self.table.resize(2)
        self.assertEqual(self.table.to_list('func'), [3, -1])

    def test_column_is_read_only(self):
        column = self.table.column('func')
        with self.assertRaises(ValueError):
            column[0] = 10

    def test_transform_returns_new_table(self):
        shifted = self.table.transform({'time': lambda time: time + 10})
        self.assertEqual(shifted.to_list('time'), [10.5, 11.5, 12.5])
        self.assertEqual(self.table.to_list('time'), [0.5, 1.5, 2.5])
        self.assertEqual(shifted.to_list('prefix'), [None, 0, 1])

    def test_transform_keeps_mask(self):
        doubled = self.table.transform({'prefix': lambda prefix: prefix * 2})
        self.assertEqual(doubled.to_list('prefix'), [None, 0, 2])

    def test_transform_length_mismatch(self):
        with self.assertRaises(ValueError):
            self.table.transform({'func': lambda func: [1]})

    def test_with_columns(self):
        extra = Column('depth', 'int32', nullable=True)
        table = self.table.with_columns([extra], {'depth': np.ma.MaskedArray([1, 2, 3], mask=[False, True, False])})
        self.assertEqual(table.to_list('depth'), [1, None, 3])
        self.assertEqual(table.to_list('prefix'), [None, 0, 1])
        self.assertNotIn('depth', self.table)
        self.assertIn('depth', table)

    def test_take(self):
        taken = self.table.take([2, 0])
        self.assertEqual(taken.to_list('func'), [5, 3])
        self.assertEqual(taken.to_list('prefix'), [1, None])
        with self.assertRaises(IndexError):
            self.table.take([3])

    def test_dict_round_trip(self):
        restored = ColumnarTable.from_dict(COLUMNS, self.table.to_dict())
        self.assertEqual(restored, self.table)

    def test_empty_table(self):
        table = ColumnarTable(COLUMNS)
        self.assertEqual(len(table), 0)
        self.assertEqual(table.to_dict(), {'length': 0, 'prefix': [], 'func': [], 'time': [], 'data': []})
        self.assertEqual(len(table.copy()), 0)

    def test_duplicate_column(self):
        with self.assertRaises(ValueError):
            ColumnarTable([Column('a'), Column('a')])


if __name__ == '__main__':
    unittest.main()
