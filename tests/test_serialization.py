import json
import os
import tempfile
import unittest

from profile_tree_tool.call_tree_builder import CallTreeBuilder
from profile_tree_tool.legacy_format import LEGACY_FORMAT
from profile_tree_tool.parser import preprocess_profile
from profile_tree_tool.serialization import (
    load_profile, profile_to_dict, save_profile, serialize_profile, unserialize_profile_of_arbitrary_format,
)

from profile_factory import make_raw_profile


def make_legacy_profile():
    return {
        'format': LEGACY_FORMAT,
        'meta': {'interval': 1, 'startTime': 0},
        'profileJSON': {
            'threads': {
                '0': {
                    'name': 'Content',
                    'samples': [
                        {'frames': [0, 1], 'extraInfo': {'time': 10.0, 'responsiveness': 1}},
                        {'frames': [0, 2], 'extraInfo': {'time': 11.0}},
                        {'frames': [0, 1], 'extraInfo': {'time': 12.0}},
                    ],
                    'markers': [{'name': 'Paint', 'time': 10.5, 'data': {'category': 'Paint'}}],
                },
            },
        },
        'symbolicationTable': {
            '0': 'main',
            '1': 'draw (http://example.com/draw.js:5)',
            '2': 'Layout (in xul.dll)',
        },
    }


class TestSerialization(unittest.TestCase):
    def setUp(self):
        self.profile = preprocess_profile(make_raw_profile())

    def test_round_trip(self):
        restored = unserialize_profile_of_arbitrary_format(serialize_profile(self.profile))
        self.assertIsNotNone(restored)
        self.assertEqual(len(restored.threads), 1)
        original, thread = self.profile.threads[0], restored.threads[0]
        self.assertEqual(thread.string_table, original.string_table)
        for table_name in ('func_table', 'resource_table', 'stack_table', 'frame_table', 'samples', 'markers'):
            self.assertEqual(getattr(thread, table_name), getattr(original, table_name), table_name)
        self.assertEqual(thread.libs, original.libs)
        self.assertEqual(thread.name, original.name)
        self.assertEqual(restored.meta, self.profile.meta)

    def test_round_trip_keeps_func_stack_table(self):
        thread = CallTreeBuilder().build(self.profile.threads[0])
        self.profile.threads[0] = thread
        restored = unserialize_profile_of_arbitrary_format(profile_to_dict(self.profile))
        self.assertEqual(restored.threads[0].func_stack_table, thread.func_stack_table)
        self.assertEqual(restored.threads[0].samples.to_list('func_stack'), thread.samples.to_list('func_stack'))

    def test_raw_profile_is_detected(self):
        profile = unserialize_profile_of_arbitrary_format(json.dumps(make_raw_profile()))
        self.assertEqual(profile.threads[0].get_func_name(2), 'onLoad')

    def test_legacy_profile_is_detected(self):
        profile = unserialize_profile_of_arbitrary_format(make_legacy_profile())
        self.assertIsNotNone(profile)
        thread = profile.threads[0]
        self.assertEqual(thread.name, 'GeckoMain')
        self.assertEqual(thread.process_type, 'tab')
        self.assertEqual(thread.samples.to_list('time'), [10.0, 11.0, 12.0])
        self.assertEqual(thread.samples.to_list('responsiveness'), [1.0, None, None])
        self.assertEqual(thread.samples.get(0, 'stack'), thread.samples.get(2, 'stack'))
        self.assertEqual(thread.get_func_name(1), 'draw')
        self.assertEqual(thread.get_func_name(2), 'Layout')
        self.assertEqual(thread.string_table.get_string(thread.markers.get(0, 'name')), 'Paint')
        self.assertEqual(profile.meta['preprocessed_profile_version'], 1)

    def test_unsupported_input_returns_none(self):
        self.assertIsNone(unserialize_profile_of_arbitrary_format('not json'))
        self.assertIsNone(unserialize_profile_of_arbitrary_format('{"foo": 1}'))
        self.assertIsNone(unserialize_profile_of_arbitrary_format([1, 2, 3]))
        self.assertIsNone(unserialize_profile_of_arbitrary_format(
            {'meta': {'preprocessed_profile_version': 99}, 'threads': []}))

    def test_broken_raw_profile_returns_none(self):
        raw = make_raw_profile()
        del raw['threads'][0]['stackTable']
        self.assertIsNone(unserialize_profile_of_arbitrary_format(raw))

    def test_save_and_load(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            for file_name in ('profile.json', 'profile.json.gz'):
                path = save_profile(self.profile, os.path.join(temp_dir, file_name))
                self.assertTrue(path.exists())
                loaded = load_profile(path)
                self.assertEqual(loaded.threads[0].func_table, self.profile.threads[0].func_table)


if __name__ == '__main__':
    unittest.main()
