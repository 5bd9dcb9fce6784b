"""
符号化模块
"""

from .batching import FunctionsUpdate, FunctionsUpdateBatcher, apply_updates
from .coordinator import (
    FunctionMergeResult, LibraryState, SymbolResolutionCoordinator, apply_function_merging,
    gather_addresses_in_thread, merge_functions, set_func_names,
)
from .pipeline import ProfileSymbolicationPipeline, symbolicate_profile, symbolicate_thread
from .symbol_cache import SymbolCache
from .symbol_provider import (
    BreakpadSymbolProvider, ChainedSymbolProvider, SymbolProvider, SymsJsonSymbolProvider,
)
from .symbol_table import SymbolTable

__all__ = [
    'FunctionsUpdate',
    'FunctionsUpdateBatcher',
    'apply_updates',
    'FunctionMergeResult',
    'LibraryState',
    'SymbolResolutionCoordinator',
    'apply_function_merging',
    'gather_addresses_in_thread',
    'merge_functions',
    'set_func_names',
    'ProfileSymbolicationPipeline',
    'symbolicate_profile',
    'symbolicate_thread',
    'SymbolCache',
    'BreakpadSymbolProvider',
    'ChainedSymbolProvider',
    'SymbolProvider',
    'SymsJsonSymbolProvider',
    'SymbolTable',
]
