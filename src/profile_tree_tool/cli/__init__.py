# -*- coding: utf-8 -*-
"""
CLI模块 - 命令行接口
"""

from .main import main
from .commands import ConvertCommand, InfoCommand, SymbolicateCommand, TreeCommand

__all__ = ['main', 'ConvertCommand', 'InfoCommand', 'SymbolicateCommand', 'TreeCommand']
