"""
Profile Tree Tool Package
"""

from .call_tree import CallTree
from .call_tree_builder import CallTreeBuilder, compute_func_stack_info
from .columnar import Column, ColumnarTable
from .library_index import LibraryIndex, get_containing_library, preprocess_shared_libraries
from .models import CallNodeDisplay, Library, Profile, ResourceType, Thread
from .parser import preprocess_profile
from .presenter import CallTreePresenter
from .serialization import load_profile, save_profile, serialize_profile, unserialize_profile_of_arbitrary_format
from .string_table import StringTable

__all__ = [
    'CallTree',
    'CallTreeBuilder',
    'compute_func_stack_info',
    'Column',
    'ColumnarTable',
    'LibraryIndex',
    'get_containing_library',
    'preprocess_shared_libraries',
    'CallNodeDisplay',
    'Library',
    'Profile',
    'ResourceType',
    'Thread',
    'preprocess_profile',
    'CallTreePresenter',
    'load_profile',
    'save_profile',
    'serialize_profile',
    'unserialize_profile_of_arbitrary_format',
    'StringTable',
]
