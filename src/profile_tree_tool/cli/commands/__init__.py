"""
CLI命令模块
"""

from .convert import ConvertCommand
from .info import InfoCommand
from .symbolicate import SymbolicateCommand
from .tree import TreeCommand

__all__ = ['ConvertCommand', 'InfoCommand', 'SymbolicateCommand', 'TreeCommand']
